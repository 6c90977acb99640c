import uvicorn
from productsync.api.app import create_app
from productsync.bootstrap import build_services
from productsync.config.settings import Settings, configure_logging

def main():
    settings = Settings.from_env()
    configure_logging(settings)

    services = build_services(settings)
    app = create_app(services)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)

if __name__ == "__main__":
    main()
