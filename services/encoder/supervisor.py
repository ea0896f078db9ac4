"""
Stream Process Supervisor

Owns the lifecycle of the single ffmpeg process that pushes the 24/7
stream to the RTMP ingest.

Responsibilities:
- validate a StreamConfig and launch ffmpeg with the compiled filter graph
- refuse a second launch while one process exists or is being spawned
- drain ffmpeg stdout/stderr continuously
- replay the last accepted config after an abnormal exit
- honour stop() unconditionally (including a pending replay)

IMPORTANT:
- MUST run on the runtime event loop (no threads touch the state cell)
- check-and-set of the handle never spans an await
"""

from __future__ import annotations

import asyncio
import codecs
import re
import signal
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Set

from services.encoder.command import EncoderCommandBuilder
from services.encoder.errors import (
    AlreadyRunning,
    EncoderCrash,
    EncoderLaunchFailed,
    LaunchAborted,
    NotRunning,
    StreamError,
)
from services.encoder.models import (
    ExitReason,
    ProcessHandle,
    StreamConfig,
    StreamPhase,
)
from shared.logging.logger import get_logger

if TYPE_CHECKING:
    from shared.runtime.stream_state import StreamState

log = get_logger("encoder.supervisor")

Spawner = Callable[..., Awaitable[Any]]

DEFAULT_RESTART_DELAY = 30.0

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


async def spawn_ffmpeg(*cmd: str):
    return await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )


class StreamSupervisor:
    """
    Owns the encoder process handle stored in the shared StreamState.

    Contract:
    - start() raises AlreadyRunning / InvalidConfig / EncoderLaunchFailed
    - stop() raises NotRunning, otherwise returns without waiting for exit
    - crashes are absorbed and replayed once after `restart_delay`
    """

    def __init__(
        self,
        state: StreamState,
        *,
        command_builder: Optional[EncoderCommandBuilder] = None,
        spawn: Optional[Spawner] = None,
        restart_delay: float = DEFAULT_RESTART_DELAY,
    ):
        self._state = state
        self._builder = command_builder or EncoderCommandBuilder()
        self._spawn = spawn or spawn_ffmpeg
        self._restart_delay = restart_delay

        self._replay_task: Optional[asyncio.Task] = None
        self._replay_launching: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

        # bumped by stop/shutdown; a launch that sees it change discards its process
        self._generation = 0

    # --------------------------------------------------
    # Lifecycle
    # --------------------------------------------------

    async def start(self, config: StreamConfig) -> ProcessHandle:
        """
        Launch the encoder for `config`.
        """
        if self._state.busy:
            raise AlreadyRunning("Stream is already running")

        config.validate()

        # a manual start supersedes a pending crash replay
        if self._cancel_replay():
            log.info("Pending replay superseded by explicit start")

        return await self._launch(config)

    async def stop(self) -> None:
        """
        Interrupt the encoder and clear the handle immediately.

        Also cancels a pending replay. Raises NotRunning when there is
        neither a process nor a pending replay.
        """
        replay_cancelled = self._cancel_replay()

        handle = self._state.handle
        if handle is None:
            if replay_cancelled:
                self._state.phase = StreamPhase.IDLE
                log.info("Stop requested during restart delay — replay cancelled")
                return
            raise NotRunning("Stream is not running")

        handle.stop_requested = True
        self._state.handle = None
        self._state.phase = StreamPhase.EXITING

        self._interrupt(handle)
        log.info(f"Stop requested — SIGINT sent to ffmpeg (pid={handle.pid})")

    async def shutdown(self, timeout: float = 10.0) -> None:
        """
        Runtime teardown: stop the encoder, wait briefly, kill if needed.
        """
        log.info("Shutting down stream supervisor")

        # any launch still spawning must not install its process
        self._generation += 1
        self._cancel_replay()

        handle = self._state.handle
        if handle is not None:
            await self.stop()
            try:
                await asyncio.wait_for(asyncio.shield(handle.exited), timeout=timeout)
            except asyncio.TimeoutError:
                log.warning(
                    f"ffmpeg did not exit within {timeout}s — killing (pid={handle.pid})"
                )
                try:
                    handle.process.kill()
                except ProcessLookupError:
                    pass
                try:
                    await asyncio.wait_for(asyncio.shield(handle.exited), timeout=timeout)
                except asyncio.TimeoutError:
                    log.error(f"ffmpeg still alive after kill (pid={handle.pid})")

        launching = self._replay_launching
        if launching is not None and not launching.done():
            done, _ = await asyncio.wait({launching}, timeout=timeout)
            if not done:
                log.warning(
                    f"ffmpeg spawn still pending after {timeout}s — it will be interrupted on arrival"
                )

        # the in-flight spawn is never cancelled; _launch discards its process
        remaining = [t for t in self._tasks if t is not launching and not t.done()]
        for task in remaining:
            task.cancel()

        if remaining:
            await asyncio.gather(*remaining, return_exceptions=True)

        self._state.phase = StreamPhase.IDLE
        log.info("Stream supervisor shutdown complete")

    # --------------------------------------------------
    # Launch
    # --------------------------------------------------

    async def _launch(self, config: StreamConfig) -> ProcessHandle:
        # reserve the slot before the first await
        self._state.phase = StreamPhase.LAUNCHING
        generation = self._generation

        try:
            cmd = self._builder.build(config)
        except Exception:
            self._state.phase = StreamPhase.IDLE
            raise

        log.info(f"Starting ffmpeg -> {config.rtmp_url}")
        log.debug(f"ffmpeg argv: {cmd}")

        try:
            process = await self._spawn(*cmd)
        except OSError as e:
            self._state.phase = StreamPhase.IDLE
            raise EncoderLaunchFailed(f"Could not start ffmpeg: {e}") from e
        except BaseException:
            self._state.phase = StreamPhase.IDLE
            raise

        handle = ProcessHandle(
            process=process,
            config=config,
            exited=asyncio.get_running_loop().create_future(),
        )

        if generation != self._generation:
            self._discard(handle)
            raise LaunchAborted("Stream was stopped while ffmpeg was starting")

        self._state.handle = handle
        self._state.last_config = config
        self._state.phase = StreamPhase.RUNNING

        self._track(self._drain(handle, getattr(process, "stdout", None), "stdout"))
        self._track(self._drain(handle, getattr(process, "stderr", None), "stderr"))
        self._track(self._watch(handle))

        log.info(f"ffmpeg running (pid={handle.pid})")
        return handle

    def _discard(self, handle: ProcessHandle) -> None:
        # never installed; reap it so the exit does not go unobserved
        handle.stop_requested = True
        self._interrupt(handle)
        self._track(self._drain(handle, getattr(handle.process, "stdout", None), "stdout"))
        self._track(self._drain(handle, getattr(handle.process, "stderr", None), "stderr"))
        self._track(self._watch(handle))
        log.info(f"Discarded ffmpeg spawned after stop (pid={handle.pid})")

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    def _interrupt(handle: ProcessHandle) -> None:
        try:
            handle.process.send_signal(signal.SIGINT)
        except ProcessLookupError:
            log.debug(f"ffmpeg already gone (pid={handle.pid})")

    # --------------------------------------------------
    # Output draining
    # --------------------------------------------------

    async def _drain(self, handle: ProcessHandle, stream, name: str) -> None:
        if stream is None:
            return

        # chunks may split a line or a multi-byte character; carry both over
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        partial = ""

        try:
            while True:
                chunk = await stream.read(4096)
                if not chunk:
                    break

                # ffmpeg terminates progress lines with \r
                *lines, partial = _LINE_BREAK.split(partial + decoder.decode(chunk))
                for line in lines:
                    self._record_output(handle, name, line)

            self._record_output(handle, name, partial + decoder.decode(b"", final=True))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning(f"ffmpeg {name} drain stopped: {e}")

    @staticmethod
    def _record_output(handle: ProcessHandle, name: str, line: str) -> None:
        line = line.strip()
        if not line:
            return
        if name == "stderr":
            handle.stderr_tail.append(line)
        log.debug(f"[ffmpeg:{name}] {line}")

    # --------------------------------------------------
    # Exit handling
    # --------------------------------------------------

    async def _watch(self, handle: ProcessHandle) -> None:
        returncode = await handle.process.wait()

        reason = ExitReason.from_returncode(
            returncode,
            stop_requested=handle.stop_requested,
        )
        if not handle.exited.done():
            handle.exited.set_result(reason)

        self._on_exit(handle, reason)

    def _on_exit(self, handle: ProcessHandle, reason: ExitReason) -> None:
        self._state.last_exit_code = reason.code

        current = self._state.handle
        if current is not None and current is not handle:
            log.debug(f"Stale exit from previous ffmpeg (pid={handle.pid}) ignored")
            return

        if current is handle:
            self._state.handle = None

        if reason.expected:
            log.info(f"ffmpeg finished (code={reason.code})")
            if self._state.phase in (StreamPhase.RUNNING, StreamPhase.EXITING):
                self._state.phase = StreamPhase.IDLE
            return

        crash = EncoderCrash(reason.code, "\n".join(handle.stderr_tail))
        log.error(f"{crash}")
        if crash.stderr_tail:
            log.error(f"ffmpeg stderr tail:\n{crash.stderr_tail}")

        config = self._state.last_config
        if config is None:
            log.warning("No stored stream config — not restarting")
            self._state.phase = StreamPhase.IDLE
            return

        self._state.phase = StreamPhase.CRASHED
        self._schedule_replay(config)

    # --------------------------------------------------
    # Replay
    # --------------------------------------------------

    def _schedule_replay(self, config: StreamConfig) -> None:
        self._cancel_replay()
        log.info(f"Restarting ffmpeg in {self._restart_delay}s")
        self._replay_task = self._track(self._replay_after_delay(config))

    def _cancel_replay(self) -> bool:
        """
        Withdraw a pending replay. Returns True when one was pending.

        During the delay the task is cancelled outright. Once it is spawning
        ffmpeg it is left to finish and the launch generation is bumped, so
        the new process is interrupted instead of installed.
        """
        task = self._replay_task
        self._replay_task = None
        if task is None or task.done():
            return False
        if task is self._replay_launching:
            self._generation += 1
        else:
            task.cancel()
        return True

    async def _replay_after_delay(self, config: StreamConfig) -> None:
        try:
            await asyncio.sleep(self._restart_delay)
        except asyncio.CancelledError:
            log.debug("Pending replay cancelled")
            raise

        task = asyncio.current_task()
        try:
            if self._state.busy:
                log.info("Replay skipped — a stream is already running")
                return

            self._state.restart_count += 1
            log.info(f"Replaying last stream config (restart #{self._state.restart_count})")

            self._replay_launching = task
            try:
                config.validate()
                await self._launch(config)
            except LaunchAborted as e:
                log.info(f"Replay withdrawn: {e}")
            except StreamError as e:
                self._state.phase = StreamPhase.IDLE
                log.error(f"Replay failed, staying idle: {e}")
            except Exception as e:
                self._state.phase = StreamPhase.IDLE
                log.error(f"Replay failed unexpectedly, staying idle: {e}")
        finally:
            if self._replay_launching is task:
                self._replay_launching = None
            if self._replay_task is task:
                self._replay_task = None

    # --------------------------------------------------
    # Read-only Introspection
    # --------------------------------------------------

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state.is_streaming

    @property
    def phase(self) -> StreamPhase:
        return self._state.phase

    @property
    def restart_count(self) -> int:
        return self._state.restart_count

    @property
    def pid(self) -> Optional[int]:
        handle = self._state.handle
        return handle.pid if handle else None

    @property
    def replay_pending(self) -> bool:
        return self._replay_task is not None and not self._replay_task.done()

    def snapshot(self) -> Dict[str, Any]:
        payload = self._state.to_dict()
        payload["replay_pending"] = self.replay_pending
        payload["restart_delay"] = self._restart_delay
        return payload
