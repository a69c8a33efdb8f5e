import asyncio

import uvicorn
from dotenv import load_dotenv
from loguru import logger

from devmentor.app_config import load_json_config, parse_app_config, resolve_runtime_env
from devmentor.bootstrap import bootstrap_runtime
from devmentor.memory.models import SESSION_TYPES
from devmentor.server import create_app


async def main() -> None:
    load_dotenv()

    app_config = parse_app_config(load_json_config())
    env = resolve_runtime_env(app_config.provider_name)
    runtime = bootstrap_runtime(app_config, env)

    print(f"DevMentor backend (provider: {runtime.provider.name}, model: {app_config.default_model})")
    print(f"Listening on http://{app_config.host}:{app_config.port}")
    print("Session types and tools:")
    for session_type in SESSION_TYPES:
        names = [t.name for t in runtime.dispatcher.tools_for(session_type)]
        print(f"  - {session_type}: {', '.join(names) if names else '(none)'}")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    app = create_app(runtime.service, provider_name=runtime.provider.name)
    server = uvicorn.Server(
        uvicorn.Config(app, host=app_config.host, port=app_config.port, log_config=None)
    )
    try:
        await server.serve()
    except Exception as ex:
        logger.error(f"Server stopped: {ex}")
        raise
    finally:
        runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
