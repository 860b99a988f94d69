"""
FastAPI application entry point for the Stockroom API.

Every request passes authentication, silent refresh and the subscription
guard before reaching a route; business routes reach tenant data only
through the data source router.
"""

import os
import logging

from stockroom.app import create_app

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = create_app(provision_on_startup=True)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
