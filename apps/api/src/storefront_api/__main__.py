import uvicorn

from .core.settings import settings


def main() -> None:
    """Serve the storefront loyalty API; auto-reload only in development."""
    uvicorn.run(
        "storefront_api.app:create_app",
        factory=True,
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":
    main()
