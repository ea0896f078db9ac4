import asyncio
import signal
import sys
from typing import Optional

from dotenv import load_dotenv

from runtime.version import as_string
from services.control_api.server import ControlApi, ControlApiServer
from services.encoder.command import EncoderCommandBuilder
from services.encoder.supervisor import StreamSupervisor
from services.engagement.messages import load_message_pool
from services.engagement.scheduler import EngagementScheduler
from services.youtube.api.chat import YouTubeChatClient
from services.youtube.api.livestream import YouTubeLivestreamAPI
from shared.auth.credentials import CredentialStore
from shared.config.stream import RuntimeSettings, load_runtime_settings
from shared.logging.logger import get_logger
from shared.runtime.stream_state import StreamState

log = get_logger("core.app")


class Runtime:
    """
    Wires the state cell, supervisor, scheduler and control API together.

    `credentials` is the entry-point for the external auth collaborator:
    call `runtime.credentials.update(token, expires_at)` on every refresh.
    """

    def __init__(self, settings: RuntimeSettings, loop: asyncio.AbstractEventLoop):
        self.settings = settings
        self.state = StreamState()
        self.credentials = CredentialStore(settings.engagement.access_token)

        self.supervisor = StreamSupervisor(
            self.state,
            command_builder=EncoderCommandBuilder(
                ffmpeg_path=settings.stream.ffmpeg_path,
                work_dir=settings.stream.work_dir,
            ),
            restart_delay=settings.stream.restart_delay,
        )

        self.scheduler: Optional[EngagementScheduler] = None
        if settings.engagement.enabled:
            eng = settings.engagement
            self.scheduler = EngagementScheduler(
                self.state,
                chat=YouTubeChatClient(credentials=self.credentials),
                livestream=YouTubeLivestreamAPI(credentials=self.credentials),
                messages=load_message_pool(eng.messages_file),
                interval=eng.interval_seconds,
                inactivity_threshold=eng.inactivity_seconds,
                cooldown=eng.cooldown_seconds,
                liveness_interval=eng.liveness_seconds or None,
            )
        else:
            log.info("Engagement scheduler DISABLED (ENGAGEMENT_ENABLED=false)")

        self.api = ControlApi(
            supervisor=self.supervisor,
            settings=settings.stream,
            scheduler=self.scheduler,
            credentials=self.credentials,
        )
        self.server = ControlApiServer(self.api, settings.api, loop)

    async def shutdown(self) -> None:
        self.server.stop()

        if self.scheduler is not None:
            try:
                await self.scheduler.stop()
            except Exception as e:
                log.warning(f"Scheduler shutdown error ignored: {e}")

        try:
            await self.supervisor.shutdown()
        except Exception as e:
            log.warning(f"Supervisor shutdown error ignored: {e}")


async def main(stop_event: asyncio.Event):
    # --------------------------------------------------
    # ENV
    # --------------------------------------------------
    load_dotenv()
    log.info("Environment variables loaded")
    log.info(f"{as_string()} booting")

    settings = load_runtime_settings()

    # --------------------------------------------------
    # CORE SYSTEMS
    # --------------------------------------------------
    runtime = Runtime(settings, asyncio.get_running_loop())
    runtime.server.start()

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    await stop_event.wait()

    log.info("Shutdown initiated")
    await runtime.shutdown()
    log.info("LofiLive stopped")


# ----------------------------------------------------------------------
# SIGNAL HANDLING (WINDOWS-SAFE)
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    Windows-safe Ctrl+C handler.
    Uses signal.signal + asyncio.Event to unwind cleanly.
    """

    def _handler(signum, frame):
        try:
            loop.call_soon_threadsafe(stop_event.set)
        except RuntimeError:
            stop_event.set()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except ValueError as e:
        log.warning(f"Signal handlers not installed: {e}")


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run():
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    stop_event = asyncio.Event()
    _install_signal_handlers(loop, stop_event)

    try:
        loop.run_until_complete(main(stop_event))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received — shutdown initiated")

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS (CLEANLY)
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        loop.run_until_complete(loop.shutdown_asyncgens())

        asyncio.set_event_loop(None)
        loop.close()


if __name__ == "__main__":
    run()
    sys.exit(0)
