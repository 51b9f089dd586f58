"""Run the proxy with uvicorn: ``python -m genai_proxy``."""

import uvicorn

from genai_proxy.config import load_config


def main() -> None:
    config = load_config()
    uvicorn.run(
        "genai_proxy.main:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
