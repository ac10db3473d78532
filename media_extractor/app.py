"""Main application - processes the file queue from the CLI, cron or a polling loop."""
import argparse
import json
import signal
import sys
import threading

from media_extractor.logging_conf import logger
from media_extractor import settings
from media_extractor.pipeline import Pipeline, ProcessingFailed
from media_extractor.services.transcription import TranscriptionClient
from media_extractor.services.vision import VisionClient, build_credentials


def build_pipeline(stop_event: threading.Event = None) -> Pipeline:
    """Wire the pipeline from settings; credentials are built once here."""
    settings.validate_config()
    vision = VisionClient(build_credentials())
    transcriber = TranscriptionClient(stop_event=stop_event)
    return Pipeline(vision=vision, transcriber=transcriber)


class Application:
    """Long-running worker that keeps calling process_next."""

    def __init__(self, pipeline: Pipeline = None, stop_event: threading.Event = None):
        self.stop_event = stop_event or threading.Event()
        self.pipeline = pipeline or build_pipeline(self.stop_event)
        self.running = False

    def start(self):
        """Start the application."""
        logger.info("=" * 50)
        logger.info("Media Text Extractor")
        logger.info("=" * 50)
        logger.info(f"Poll interval: {settings.POLL_INTERVAL}s")
        logger.info(f"Max attempts: {settings.MAX_ATTEMPTS}, backoff: {settings.BACKOFF_SCHEDULE}")
        logger.info("=" * 50)
        self.running = True
        logger.info("Started - watching for queued files")

    def stop(self):
        """Stop the application."""
        if not self.running:
            return
        self.running = False
        self.stop_event.set()
        self.pipeline.db.close()
        logger.info("Stopped")

    def run(self):
        """Main loop."""
        self.start()

        while self.running:
            try:
                result = self.pipeline.process_next()
                if not result.get("processed"):
                    self.stop_event.wait(settings.POLL_INTERVAL)
            except ProcessingFailed:
                # already recorded with its retry schedule; move on
                continue
            except Exception as e:
                logger.error(f"Error in main loop: {e}", exc_info=True)
                self.stop_event.wait(5)

        self.stop()


def run_cron(pipeline: Pipeline, max_items: int = None) -> dict:
    """Process up to `max_items` in series, stopping on an empty queue or a failure."""
    max_items = max_items or settings.CRON_MAX_ITEMS
    results = []
    for _ in range(max_items):
        try:
            result = pipeline.process_next()
        except ProcessingFailed as e:
            results.append({"processed": True, "itemId": e.item_id, "success": False, "error": e.message})
            break
        if not result.get("processed"):
            break
        results.append(result)

    summary = {
        "processed": len(results),
        "succeeded": sum(1 for r in results if r.get("success")),
        "results": results,
    }
    logger.info(f"Cron run: {summary['processed']} processed, {summary['succeeded']} succeeded")
    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="media-extractor", description=__doc__)
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("next", help="claim and process one queued item")
    commands.add_parser("cron", help=f"process up to {settings.CRON_MAX_ITEMS} items in series")
    commands.add_parser("run", help="keep processing until SIGINT/SIGTERM")
    retry = commands.add_parser("retry", help="reset an item's attempts and requeue it")
    retry.add_argument("item_id")
    process = commands.add_parser("process", help="requeue an item and process it now")
    process.add_argument("item_id")
    return parser


def _print(result: dict):
    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))


def main(argv=None):
    """Entry point."""
    args = build_parser().parse_args(argv)

    try:
        if args.command == "run":
            app = Application()

            def signal_handler(sig, frame):
                logger.info(f"Received signal {sig}")
                app.stop()

            signal.signal(signal.SIGINT, signal_handler)
            signal.signal(signal.SIGTERM, signal_handler)
            app.run()
            return

        pipeline = build_pipeline()
        try:
            if args.command == "next":
                _print(pipeline.process_next())
            elif args.command == "cron":
                _print(run_cron(pipeline))
            elif args.command == "retry":
                _print(pipeline.retry_item(args.item_id))
            elif args.command == "process":
                _print(pipeline.process_item(args.item_id))
        finally:
            pipeline.db.close()

    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except LookupError as e:
        logger.error(str(e))
        sys.exit(1)
    except ProcessingFailed as e:
        _print({"processed": True, "itemId": e.item_id, "success": False, "error": e.message})
        sys.exit(1)


if __name__ == "__main__":
    main()
