"""API server entry point for python -m talkpipe.api"""
import uvicorn
from talkpipe.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "talkpipe.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
