#!/usr/bin/env python3
"""
Content Autopilot - Main Entry Point

Usage:
    # Start the API server
    python main.py server

    # Run the automation worker (plan triggers, scripts, videos, distribution)
    python main.py worker

    # Apply the database schema
    python main.py migrate

    # Run one plan end-to-end for today
    python main.py process-plan <plan-id> --user <user-id>

    # Block until a generating video finishes
    python main.py wait-video <video-id>

    # Print configuration problems
    python main.py check-config
"""

import argparse
import asyncio
import json
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("autopilot")


def start_server(host: str = "0.0.0.0", port: int = 8000):
    """Run the FastAPI app under uvicorn."""
    import uvicorn

    logger.info(f"Content Autopilot API running at http://{host}:{port}")
    uvicorn.run("services.api.server:app", host=host, port=port, log_level="info")


async def run_migrations() -> list[str]:
    from core.database import apply_migrations, close_pool, get_pool

    try:
        applied = await apply_migrations(await get_pool())
    finally:
        await close_pool()
    for name in applied:
        logger.info(f"Applied {name}")
    return applied


async def process_plan(plan_id: str, user_id: str) -> dict:
    from core.database import close_pool
    from services.automation.service import AutomationService

    try:
        summary = await AutomationService().process_plan(plan_id, user_id)
    finally:
        await close_pool()
    logger.info(f"Plan {plan_id} processed: {summary}")
    return summary


async def wait_video(video_id: str) -> dict:
    from core.database import close_pool
    from services.video_generation.service import VideoService

    try:
        video = await VideoService().wait_for_video(video_id)
    finally:
        await close_pool()
    logger.info(f"Video {video_id}: {video['status']} {video.get('video_url') or ''}")
    return video


def check_config() -> int:
    from core.config import get_config
    from core.feature_flags import get_feature_status

    issues = get_config().validate()
    print(json.dumps(get_feature_status(), indent=2))
    if not issues:
        print("Configuration OK")
        return 0
    for issue in issues:
        print(f"  - {issue}")
    return 1


def main():
    parser = argparse.ArgumentParser(
        description="Content Autopilot - planned short videos, generated and posted automatically",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Server command
    server_parser = subparsers.add_parser("server", help="Start the API server")
    server_parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    server_parser.add_argument("--port", type=int, default=8000, help="Port to listen on")

    # Worker command
    subparsers.add_parser("worker", help="Run the automation scheduler")

    # Migrate command
    subparsers.add_parser("migrate", help="Apply the SQL schema")

    # Process-plan command
    plan_parser = subparsers.add_parser("process-plan", help="Run today's pipeline for one plan")
    plan_parser.add_argument("plan_id", help="Plan ID")
    plan_parser.add_argument("--user", required=True, help="Owner user ID")

    # Wait-video command
    wait_parser = subparsers.add_parser("wait-video", help="Wait for a generating video to finish")
    wait_parser.add_argument("video_id", help="Video ID")

    # Check-config command
    subparsers.add_parser("check-config", help="Print configuration issues")

    # Status command
    status_parser = subparsers.add_parser("status", help="Check server health")
    status_parser.add_argument(
        "--server",
        default="http://localhost:8000",
        help="API server URL",
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Run appropriate command
    if args.command == "server":
        start_server(host=args.host, port=args.port)

    elif args.command == "worker":
        from core.feature_flags import is_automation_enabled
        from services.automation.scheduler import run_worker

        if not is_automation_enabled():
            logger.warning("AUTOMATION_ENABLED=false, worker not started")
            sys.exit(0)
        asyncio.run(run_worker())

    elif args.command == "migrate":
        asyncio.run(run_migrations())

    elif args.command == "process-plan":
        asyncio.run(process_plan(args.plan_id, args.user))

    elif args.command == "wait-video":
        asyncio.run(wait_video(args.video_id))

    elif args.command == "check-config":
        sys.exit(check_config())

    elif args.command == "status":
        import aiohttp

        async def check_status():
            async with aiohttp.ClientSession() as session:
                try:
                    async with session.get(f"{args.server}/health") as resp:
                        if resp.status == 200:
                            data = await resp.json()
                            print(f"Server: {args.server}")
                            print(f"Status: {data['status']}")
                            print(f"Database: {'up' if data['database'] else 'down'}")
                            for name, breaker in data["circuit_breakers"].items():
                                print(f"  - {name}: {breaker['state']}")
                        else:
                            print(f"Server returned status {resp.status}")
                except aiohttp.ClientError as e:
                    print(f"Cannot connect to server: {e}")
                    sys.exit(1)

        asyncio.run(check_status())


if __name__ == "__main__":
    main()
