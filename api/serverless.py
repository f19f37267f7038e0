"""
Serverless entry point for Vercel / AWS Lambda deployment.
Wraps the FastAPI application with Mangum.
"""

from mangum import Mangum


def create_handler():
    """Factory function to create the Mangum handler"""
    from index import app
    return Mangum(app, lifespan="off")


handler = create_handler()
