import uvicorn

from services.ingest.config import load_config
from services.ingest.main import build_app


def main() -> None:
    cfg = load_config()
    uvicorn.run(build_app(cfg), host=cfg.host, port=cfg.port)


if __name__ == "__main__":
    main()
