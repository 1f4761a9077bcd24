import uvicorn

from .main import create_app
from .settings import default_data_dir


def main() -> None:
    app = create_app(default_data_dir())
    server = app.state.settings_manager.settings.get("server", {})
    uvicorn.run(
        app,
        host=server.get("host", "127.0.0.1"),
        port=int(server.get("port", 5174)),
        log_level="info",
    )


if __name__ == "__main__":
    main()
