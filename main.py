# Local runner for both servers. Either app can also be started alone:
#   uvicorn rsizevideo.main:processing_app --host 0.0.0.0 --port 5000
#   uvicorn rsizevideo.main:download_app --host 0.0.0.0 --port 5001
import asyncio
import logging

import uvicorn

from rsizevideo.main import download_app, processing_app, settings


async def serve() -> None:
    servers = [
        uvicorn.Server(uvicorn.Config(processing_app, host="0.0.0.0", port=settings.processing_port)),
        uvicorn.Server(uvicorn.Config(download_app, host="0.0.0.0", port=settings.download_port)),
    ]
    await asyncio.gather(*(s.serve() for s in servers))


if __name__ == "__main__":
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
    asyncio.run(serve())
