"""Agent invocation adapter — spawns and monitors a single Claude Code call."""

from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Protocol

from .display import debug_log
from .models import AgentResult, Usage
from .prompt import is_backlog_complete
from .tools import tool_status

AUTH_MARKERS = ("authentication", "api key", "unauthorized", "invalid_api_key", "401")


class StreamListener(Protocol):
    def on_text(self, chunk: str) -> None: ...

    def on_status(self, status: str) -> None: ...


class AgentAdapter(Protocol):
    async def invoke(
        self,
        context: str,
        continuation_token: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AgentResult: ...


class StreamParser:
    """Folds stream-json events into an AgentResult, notifying listeners."""

    def __init__(self, listeners: list[StreamListener], debug: bool = False) -> None:
        self.listeners = listeners
        self.debug = debug
        self.text_parts: list[str] = []
        self.result_text = ""
        self.seen_statuses: set[str] = set()
        self.continuation_token: str | None = None
        self.usage: Usage | None = None
        self.is_error = False
        self.num_turns = 0

    def _emit(self, method: str, value: str) -> None:
        for listener in self.listeners:
            handler = getattr(listener, method, None)
            if handler is None:
                continue
            try:
                handler(value)
            except Exception as e:
                debug_log(f"Listener {method} failed: {e}", self.debug)

    def feed_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            debug_log(f"Non-JSON line: {line[:100]}", self.debug)
            return
        if isinstance(obj, dict):
            self.handle_event(obj)

    def handle_event(self, obj: dict) -> None:
        msg_type = obj.get("type", "")

        if msg_type == "system" and obj.get("subtype") == "init":
            self.continuation_token = obj.get("session_id") or self.continuation_token

        elif msg_type == "assistant":
            content = obj.get("message", {}).get("content", [])
            for block in content:
                btype = block.get("type", "")
                if btype == "text":
                    text = block.get("text", "")
                    if text:
                        self.text_parts.append(text)
                        self._emit("on_text", text)
                elif btype == "tool_use":
                    status = tool_status(block.get("name", "?"), block.get("input"))
                    if status not in self.seen_statuses:
                        self.seen_statuses.add(status)
                        self._emit("on_status", status)

        elif msg_type == "result":
            self.result_text = obj.get("result", "") or ""
            self.is_error = bool(obj.get("is_error", False))
            self.num_turns = obj.get("num_turns", 0) or 0
            if obj.get("session_id"):
                self.continuation_token = obj["session_id"]
            self.usage = self._usage_from(obj)

    @staticmethod
    def _usage_from(obj: dict) -> Usage:
        usage = Usage(total_cost_usd=obj.get("total_cost_usd", 0.0) or 0.0)
        raw = obj.get("usage")
        if isinstance(raw, dict):
            usage.input_tokens = raw.get("input_tokens", 0) or 0
            usage.output_tokens = raw.get("output_tokens", 0) or 0
            usage.cache_read_tokens = raw.get("cache_read_input_tokens")
            usage.cache_creation_tokens = raw.get("cache_creation_input_tokens")
            return usage
        # Older CLI builds only report per-model usage
        for model_data in (obj.get("modelUsage") or {}).values():
            usage.input_tokens += model_data.get("inputTokens", 0)
            usage.output_tokens += model_data.get("outputTokens", 0)
            usage.cache_read_tokens = (usage.cache_read_tokens or 0) + model_data.get(
                "cacheReadInputTokens", 0
            )
            usage.cache_creation_tokens = (usage.cache_creation_tokens or 0) + model_data.get(
                "cacheCreationInputTokens", 0
            )
        return usage

    @property
    def output(self) -> str:
        full_text = "".join(self.text_parts)
        return full_text if full_text else self.result_text


def describe_failure(message: str) -> str:
    lowered = message.lower()
    if any(marker in lowered for marker in AUTH_MARKERS):
        return (
            "API key authentication failed\n"
            "  → Check ANTHROPIC_API_KEY or run `claude` once to log in"
        )
    return message


class ClaudeCodeAdapter:
    """Runs `claude -p` with stream-json output for one attempt.

    Never raises: cancellation, timeouts, crashes and spawn failures are all
    reported through the returned AgentResult.
    """

    def __init__(
        self,
        cwd: Path,
        model: str = "sonnet",
        timeout: float | None = None,
        idle_timeout: float | None = None,
        debug: bool = False,
        command: str = "claude",
    ) -> None:
        self.cwd = cwd
        self.model = model
        self.timeout = timeout
        self.idle_timeout = idle_timeout
        self.debug = debug
        self.command = command
        self.listeners: list[StreamListener] = []

    def add_listener(self, listener: StreamListener) -> None:
        self.listeners.append(listener)

    def build_command(self, continuation_token: str | None) -> list[str]:
        cmd = [
            self.command,
            "-p",
            "--verbose",
            "--model", self.model,
            "--output-format", "stream-json",
            "--permission-mode", "bypassPermissions",
        ]
        if continuation_token:
            cmd.extend(["--resume", continuation_token])
        return cmd

    async def invoke(
        self,
        context: str,
        continuation_token: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AgentResult:
        parser = StreamParser(self.listeners, self.debug)
        try:
            return await self._invoke(parser, context, continuation_token, cancel)
        except asyncio.CancelledError:
            return AgentResult(
                success=False,
                output=parser.output,
                cancelled=True,
                error="cancelled",
                continuation_token=parser.continuation_token,
            )
        except FileNotFoundError:
            return AgentResult(
                success=False,
                error=f"`{self.command}` not found — install Claude Code first",
            )
        except Exception as e:
            debug_log(f"Agent invocation failed: {e!r}", self.debug)
            return AgentResult(
                success=False,
                output=parser.output,
                error=describe_failure(str(e) or e.__class__.__name__),
                continuation_token=parser.continuation_token,
            )

    async def _invoke(
        self,
        parser: StreamParser,
        context: str,
        continuation_token: str | None,
        cancel: asyncio.Event | None,
    ) -> AgentResult:
        cmd = self.build_command(continuation_token)
        debug_log(f"Spawning: {' '.join(cmd)}", self.debug)

        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=self.cwd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        start_time = time.monotonic()
        last_activity = start_time
        stderr_lines: list[str] = []
        cancelled = False
        hard_killed = False
        idle_killed = False

        def kill() -> None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass

        async def drain_stderr() -> None:
            assert proc.stderr is not None
            async for raw in proc.stderr:
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    stderr_lines.append(line)
                    debug_log(f"[stderr] {line}", self.debug)

        async def watch_cancel() -> None:
            nonlocal cancelled
            assert cancel is not None
            await cancel.wait()
            cancelled = True
            kill()

        async def watchdog() -> None:
            nonlocal hard_killed, idle_killed
            while proc.returncode is None:
                await asyncio.sleep(1)
                now = time.monotonic()
                if self.timeout and now - start_time > self.timeout:
                    hard_killed = True
                    kill()
                    return
                if self.idle_timeout and now - last_activity > self.idle_timeout:
                    idle_killed = True
                    kill()
                    return

        tasks = [asyncio.create_task(drain_stderr()), asyncio.create_task(watchdog())]
        if cancel is not None:
            tasks.append(asyncio.create_task(watch_cancel()))

        try:
            assert proc.stdin is not None
            try:
                proc.stdin.write(context.encode("utf-8"))
                await proc.stdin.drain()
                proc.stdin.close()
            except (BrokenPipeError, ConnectionResetError) as e:
                debug_log(f"Failed to write prompt: {e}", self.debug)

            assert proc.stdout is not None
            buf = b""
            while True:
                chunk = await proc.stdout.read(65536)
                if not chunk:
                    break
                last_activity = time.monotonic()
                buf += chunk
                while b"\n" in buf:
                    raw_line, buf = buf.split(b"\n", 1)
                    parser.feed_line(raw_line.decode("utf-8", errors="replace"))
            if buf:
                parser.feed_line(buf.decode("utf-8", errors="replace"))

            try:
                await asyncio.wait_for(proc.wait(), timeout=10)
            except asyncio.TimeoutError:
                kill()
                await proc.wait()
        finally:
            for task in tasks:
                task.cancel()
            for task in tasks:
                try:
                    await task
                except (asyncio.CancelledError, Exception):
                    pass
            if proc.returncode is None:
                kill()
                await proc.wait()

        result = AgentResult(
            success=False,
            output=parser.output,
            usage=parser.usage,
            continuation_token=parser.continuation_token or continuation_token,
            exit_code=proc.returncode,
            timed_out=hard_killed,
            idle_timed_out=idle_killed,
            num_turns=parser.num_turns,
        )
        if cancelled:
            result.cancelled = True
            result.error = "cancelled"
        elif hard_killed:
            result.error = f"timed out after {self.timeout}s"
        elif idle_killed:
            result.error = f"no output for {self.idle_timeout}s (idle timeout)"
        elif proc.returncode != 0 or parser.is_error:
            detail = parser.result_text or "\n".join(stderr_lines[-10:])
            result.error = describe_failure(
                detail or f"claude exited with code {proc.returncode}"
            )
        else:
            result.success = True
            result.backlog_complete = is_backlog_complete(result.output)
        return result
