import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from checkpoint_chat.app_config import load_json_config, parse_app_config, resolve_runtime_env
from checkpoint_chat.bootstrap import bootstrap_runtime


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env(app.provider_name)
    if not env.provider_api_key:
        print(f"Error: {env.provider_env_var} environment variable is required.", file=sys.stderr)
        sys.exit(1)

    runtime = bootstrap_runtime(app, env)
    chat = runtime.chat

    print("checkpoint-chat (type 'exit' to quit, '/help' for commands)")
    print(f"Model: {app.model} ({app.provider_name})")
    if runtime.pruned_checkpoints:
        print(f"Pruned {runtime.pruned_checkpoints} old checkpoint(s)")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        await chat.offer_resume()

        while True:
            try:
                user_input = input("you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            try:
                print()
                await chat.run(trimmed)
                print()
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
                print(f"Error: {ex}")
    finally:
        runtime.memory_store.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
