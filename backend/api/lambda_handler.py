"""AWS Lambda handler for the execution service using the Mangum adapter.

Mangum translates API Gateway events into ASGI calls, so the same FastAPI
app serves both local HTTP and Lambda deployments.
"""

import logging

from mangum import Mangum

from api.main import app

# The Lambda runtime leaves the root logger at WARNING, which hides the
# INFO dispatch lines.
logging.getLogger().setLevel(logging.INFO)

handler = Mangum(app, lifespan="off")
