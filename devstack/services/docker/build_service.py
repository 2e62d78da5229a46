"""
Service for Docker image builds.

Handles:
- Build context archiving and submission to the runtime
- Consuming the runtime's JSON message stream in order
- Mapping build failures onto DockerBuildError kinds
"""
import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from devstack.core.events import (
    DockerBuildCompletedEvent,
    DockerBuildFailedEvent,
    DockerBuildStatusEvent,
    EventDispatcher,
    event_dispatcher,
)
from devstack.core.exceptions import DockerBuildError, InvalidImageTagError
from devstack.services.docker.archive_service import create_archive
from devstack.services.docker.build_stream import BUILDING_FROM, classify
from devstack.services.runtime.runtime_base import ContainerRuntime, Image

logger = logging.getLogger(__name__)

_NOT_FOUND = re.compile(r"image .* not found")
_COMMAND_ERROR = re.compile(r"returned a non-zero code")
_UNKNOWN_INSTRUCTION = re.compile(r"Unknown instruction: (.*)")


@dataclass
class BuildOptions:
    """Image build configuration."""
    dockerfile: str
    tag: str
    cache: bool = True
    verbose: bool = False
    target: Optional[str] = None
    # Any object with write(); clear_line/move_cursor/cursor_to enable
    # in-place progress output
    stdout: Any = None


def indent_output(output: str) -> str:
    """Indent every line of the build output by four spaces."""
    return re.sub(r"^(.*)", r"    \1", output, flags=re.MULTILINE)


def classify_error(message: str, dockerfile: str, from_stage: Optional[str], output: str) -> DockerBuildError:
    """
    Map a build stream error message onto a DockerBuildError.

    Checked in order: missing image, failed command, unknown instruction,
    anything else.
    """
    if _NOT_FOUND.search(message):
        return DockerBuildError(
            DockerBuildError.NOT_FOUND, dockerfile, from_stage=from_stage, output=output
        )

    if _COMMAND_ERROR.search(message):
        return DockerBuildError(
            DockerBuildError.COMMAND_ERROR, dockerfile, from_stage=from_stage,
            output=indent_output(output),
        )

    match = _UNKNOWN_INSTRUCTION.search(message)
    if match:
        return DockerBuildError(
            DockerBuildError.UNKNOWN_INSTRUCTION_ERROR, dockerfile, from_stage=from_stage,
            output=output, instruction=match.group(1).strip(),
        )

    return DockerBuildError(
        DockerBuildError.UNEXPECTED_ERROR, dockerfile, from_stage=from_stage,
        output=indent_output(output),
    )


def _supports_cursor(sink: Any) -> bool:
    return all(hasattr(sink, attr) for attr in ("clear_line", "move_cursor", "cursor_to"))


class _BuildState:
    """Mutable state of one build invocation."""

    def __init__(self):
        self.from_stage: Optional[str] = None
        self.output = ""
        self.downloading_counter = 0


class DockerBuildService:
    """
    Service for Docker image builds.

    Responsibilities:
    - Validate build options
    - Submit the build context to the runtime
    - Classify the message stream and resolve to an Image or DockerBuildError
    """

    def __init__(self, runtime: ContainerRuntime, dispatcher: Optional[EventDispatcher] = None):
        """
        Initialize DockerBuildService.

        Args:
            runtime: Container runtime client
            dispatcher: Event dispatcher for build progress events
        """
        self.runtime = runtime
        self.dispatcher = dispatcher or event_dispatcher

    async def build(self, options: BuildOptions) -> Image:
        """
        Build an image.

        Args:
            options: Build configuration

        Returns:
            The built Image, looked up by tag after the stream ended

        Raises:
            DockerBuildError: Build failed (see DockerBuildError kinds)
            InvalidImageTagError: Empty tag
        """
        try:
            image = await self._build(options)
        except DockerBuildError as e:
            logger.warning(f"Docker build failed for {options.tag} ({e.kind})")
            await self.dispatcher.dispatch(
                DockerBuildFailedEvent(tag=options.tag, kind=e.kind, error_message=e.message)
            )
            raise

        logger.info(f"Docker build completed successfully: {options.tag}")
        await self.dispatcher.dispatch(DockerBuildCompletedEvent(tag=options.tag, image_id=image.id))
        return image

    async def _build(self, options: BuildOptions) -> Image:
        dockerfile = options.dockerfile
        if not await asyncio.to_thread(os.path.exists, dockerfile):
            raise DockerBuildError(DockerBuildError.CANNOT_FIND_DOCKERFILE, dockerfile=dockerfile)

        if not options.tag:
            raise InvalidImageTagError(options.tag or "", "Not build a image with a empty tag")

        archive = await create_archive(dockerfile)
        build_options: Dict[str, Any] = {
            "t": options.tag,
            "forcerm": True,
            "nocache": not options.cache,
            "q": not options.verbose,
        }
        if options.target:
            build_options["target"] = options.target

        logger.info(f"Starting Docker build: {options.tag} from {dockerfile}")

        try:
            stream = await self.runtime.build_image(archive, build_options)
        except Exception as e:
            raise DockerBuildError(
                DockerBuildError.SERVER_ERROR, dockerfile, err=str(e)
            ) from e

        state = _BuildState()
        try:
            async for message in stream:
                error = await self._handle_message(message, options, state)
                if error is not None:
                    raise error
        except DockerBuildError:
            raise
        except Exception as e:
            raise DockerBuildError(
                DockerBuildError.SERVER_ERROR, dockerfile,
                from_stage=state.from_stage, output=state.output, err=str(e),
            ) from e
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        return await self.runtime.find_image(options.tag)

    async def _handle_message(
        self,
        message: Any,
        options: BuildOptions,
        state: _BuildState,
    ) -> Optional[DockerBuildError]:
        """Process one stream message, returning the error that ends the build, if any."""
        if not isinstance(message, dict):
            state.output += str(message)
            return None

        if message.get("error"):
            error = str(message["error"])
            state.output += error
            return classify_error(error, options.dockerfile, state.from_stage, state.output)

        line = message.get("stream")
        if isinstance(line, str):
            stage = classify(line)
            if stage is not None:
                if options.verbose and options.stdout is not None:
                    options.stdout.write("  " + line)
                await self.dispatcher.dispatch(DockerBuildStatusEvent(
                    tag=options.tag, stage_type=stage.type, value=stage.value, line=line,
                ))
                if stage.type == BUILDING_FROM:
                    state.from_stage = stage.captures.get("FROM", stage.value)
            state.output += line
        else:
            state.output += json.dumps(message) + "\n"

        if message.get("status") == "Downloading" and options.verbose and options.stdout is not None:
            self._write_progress(options.stdout, message, state)

        return None

    @staticmethod
    def _write_progress(sink: Any, message: Dict[str, Any], state: _BuildState) -> None:
        progress_line = f"- [{message.get('id', '')}] {message.get('progress', '')}\n"
        if not _supports_cursor(sink):
            sink.write(progress_line)
            return

        if state.downloading_counter > 0:
            sink.clear_line()
            sink.move_cursor(0, -1)
        state.downloading_counter += 1
        sink.clear_line()
        sink.cursor_to(0)
        sink.write(progress_line)
