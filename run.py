"""Run the ReconFlow API server."""
import uvicorn

from reconflow.utils.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    print(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}...")
    print(f"Storage backend: {settings.STORAGE_BACKEND}, LLM extraction: {'on' if settings.LLM_ENABLED else 'off'}")
    print("Server running at: http://localhost:8000")
    print("Press CTRL+C to stop.\n")
    uvicorn.run(
        "reconflow.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
