import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..channel.session import ShellSession, get_default_session

logger = logging.getLogger(__name__)


@dataclass
class Step:
    name: str
    command: str
    capture: bool = True


def load_steps(path: Path) -> list[Step]:
    """Read a step file: one shell command per line.

    Blank lines and lines starting with '#' are skipped. A line of the form
    ``name: command`` names the step; other lines are named by position.

    Raises:
        ValueError: two steps share a name.
    """
    steps: list[Step] = []
    seen: set[str] = set()
    for lineno, raw in enumerate(Path(path).read_text(encoding='utf8').splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue
        name, sep, command = line.partition(': ')
        if sep and name and ' ' not in name:
            step = Step(name=name, command=command.strip())
        else:
            step = Step(name=f"step-{lineno}", command=line)
        if step.name in seen:
            raise ValueError(f"Duplicate step name '{step.name}' on line {lineno}")
        seen.add(step.name)
        steps.append(step)
    return steps


class StepRunner:
    """Runs a batch of privileged steps through one session.

    A non-zero exit code marks the step as failed but the batch continues
    (unless ``fail_fast``), so callers can report partial success.
    Authentication failures are not caught: without a session no remaining
    step can run.
    """

    def __init__(self, session: ShellSession | None = None):
        self.session = session or get_default_session()

    def run_step(self, step: Step) -> dict[str, Any]:
        logger.info(f"Running step '{step.name}'")
        if step.capture:
            code = self.session.run_captured(step.command)
        else:
            code = self.session.run_silent(step.command)
        if code == 0:
            logger.info(f"Step '{step.name}' succeeded")
        else:
            logger.error(f"Step '{step.name}' failed with exit code {code}")
        return {'success': code == 0, 'exit_code': code, 'skipped': False}

    def run_all(self, steps: list[Step], fail_fast: bool = False) -> dict[str, dict[str, Any]]:
        """Run ``steps`` in order.

        Returns:
            Mapping of step name to a result dict with keys:
                - success: bool
                - exit_code: int (None when skipped)
                - skipped: bool

        Raises:
            ValueError: two steps share a name; nothing is run.
        """
        names = [s.name for s in steps]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate step names: {', '.join(duplicates)}")

        results: dict[str, dict[str, Any]] = {}
        failed = False
        for step in steps:
            if failed and fail_fast:
                results[step.name] = {'success': False, 'exit_code': None, 'skipped': True}
                continue
            result = self.run_step(step)
            results[step.name] = result
            if not result['success']:
                failed = True

        ok = sum(1 for r in results.values() if r['success'])
        logger.info(f"Completed {ok}/{len(results)} steps")
        return results
