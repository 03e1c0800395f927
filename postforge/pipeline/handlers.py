# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Stage handler contract and handler-set loading.

A stage handler receives an immutable JobState and a progress callback and
returns a partial update restricted to artifact fields. Handlers must tolerate
being invoked again after a review rewind and raise on unrecoverable failure.
"""

import importlib
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from postforge.core.exceptions import ConfigurationError
from postforge.core.types import ProgressCallback
from postforge.pipeline.state import JobState


class StageHandler(Protocol):
    """Callable implementing one pipeline stage."""

    async def __call__(self, state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
        """Run the stage.

        Args:
            state: Snapshot of the job.
            on_progress: Callback for intermediate progress events.

        Returns:
            Partial update of artifact fields.
        """
        ...


@dataclass(frozen=True)
class StageHandlers:
    """The full set of handlers the engine drives a job through.

    Attributes:
        research: Gathers source material for the topic.
        write: Produces draft_content, honoring human_feedback when set.
        review: Produces review_result for the draft.
        create: Produces final_content and metadata.
        emit: Writes the post file and returns its filepath.
        validate: Produces validation_result for the emitted post.
        deploy: Creates the branch and pull request (pr_result, commit_hash).
        thumbnail: Optional; failures are logged and ignored.
    """

    research: StageHandler
    write: StageHandler
    review: StageHandler
    create: StageHandler
    emit: StageHandler
    validate: StageHandler
    deploy: StageHandler
    thumbnail: StageHandler | None = None


def load_handlers(path: str) -> StageHandlers:
    """Load a handler set from a "module:factory" path.

    The factory is called without arguments and must return StageHandlers.

    Args:
        path: Dotted module path and factory name separated by a colon,
            e.g. "postforge.pipeline.noop:create_noop_handlers".

    Returns:
        The handler set produced by the factory.

    Raises:
        ConfigurationError: If the path is malformed, the module or factory
            cannot be found, or the factory returns something else.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(
            f"Invalid handler path '{path}'. Expected 'module.path:factory'."
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import handler module '{module_name}': {e}") from e

    factory: Callable[[], Any] | None = getattr(module, attr, None)
    if factory is None or not callable(factory):
        raise ConfigurationError(f"Handler factory '{attr}' not found in '{module_name}'")

    handlers = factory()
    if not isinstance(handlers, StageHandlers):
        raise ConfigurationError(
            f"Handler factory '{path}' returned {type(handlers).__name__}, expected StageHandlers"
        )
    return handlers
