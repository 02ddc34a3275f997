import uvicorn
from portal.core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "portal.main:app",
        host="localhost",
        port=settings.SERVER_PORT,
        reload=True,
        log_level="info",
    )
