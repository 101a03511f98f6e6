"""Step executor: run one pipeline step as an external process."""

from __future__ import annotations

import os
import re
import shlex
import tempfile
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from shipline._log import get_logger
from shipline._subprocess import (
    SubprocessCancelled,
    SubprocessTimeout,
    format_process_output,
    run_process,
    scrub_env,
)
from shipline.config import DEFAULT_MAX_OUTPUT_CHARS, OUTPUT_FILE_ENV
from shipline.errors import (
    MissingInputError,
    RunCancelledError,
    SecretNotFoundError,
    StepExecutionError,
)
from shipline.pipeline.results import StepResult, StepStatus
from shipline.pipeline.schema import PipelineStep
from shipline.secrets import SecretMasker

if TYPE_CHECKING:
    from shipline._signal import CancelToken
    from shipline.secrets import SecretResolver

logger = get_logger("pipeline.executor")

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
_SENTINEL_RE = re.compile(r"\x00(\d+)\x00")
_HEREDOC_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_.-]*)<<(\S+)$")
_KEYVALUE_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_.-]*)=(.*)$")

_TRUTHY = {"true", "1", "yes", "on"}
_FALSY = {"false", "0", "no", "off", "", "null", "none"}


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _make_lookup(
    step: PipelineStep,
    context: Mapping[str, str],
    pipeline_inputs: Mapping[str, str],
) -> Callable[[str], str | None]:
    """Return a resolver: run context, then step defaults, then pipeline defaults."""

    def lookup(name: str) -> str | None:
        if name.startswith("inputs."):
            name = name[len("inputs.") :]
        for source in (context, step.defaults, pipeline_inputs):
            if name in source:
                return source[name]
        return None

    return lookup


def interpolate(
    template: str,
    lookup: Callable[[str], str | None],
    *,
    step: str,
    strict: bool = True,
    quote: Callable[[str], str] | None = None,
) -> str:
    """Replace ``{{ name }}`` placeholders using *lookup*.

    With *strict*, an unresolvable name raises :class:`MissingInputError`;
    otherwise it becomes an empty string. *quote* is applied to every
    substituted value.
    """

    def replacer(match: re.Match) -> str:
        name = match.group(1).strip()
        value = lookup(name)
        if value is None:
            if strict:
                raise MissingInputError(step, name)
            return ""
        return quote(value) if quote is not None else value

    return _PLACEHOLDER_RE.sub(replacer, template)


def _unquote(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
        return text[1:-1]
    return text


def _truthy(value: str) -> bool:
    resolved = value.strip().lower()
    if resolved in _FALSY:
        return False
    if resolved in _TRUTHY:
        return True
    # Non-empty string is truthy
    return bool(resolved)


def eval_condition(expression: str, lookup: Callable[[str], str | None], *, step: str) -> bool:
    """Evaluate an ``if:`` expression.

    Supports a leading ``!`` or ``not``, a single ``==`` / ``!=``
    comparison, and plain truthiness. Unknown names resolve to "".
    """
    expr = expression.strip()
    negate = False
    if expr.startswith("!") and not expr.startswith("!="):
        negate, expr = True, expr[1:].strip()
    elif expr.lower().startswith("not "):
        negate, expr = True, expr[4:].strip()

    for op in ("==", "!="):
        if op in expr:
            left, right = expr.split(op, 1)
            lhs = _unquote(interpolate(left, lookup, step=step, strict=False))
            rhs = _unquote(interpolate(right, lookup, step=step, strict=False))
            result = (lhs == rhs) if op == "==" else (lhs != rhs)
            break
    else:
        result = _truthy(_unquote(interpolate(expr, lookup, step=step, strict=False)))

    return not result if negate else result


def render_command(
    step: PipelineStep, lookup: Callable[[str], str | None]
) -> list[str] | str:
    """Substitute inputs into the step's command template.

    In argv mode the template is tokenised before substitution so a value
    can never split into extra arguments. In shell mode values are quoted.
    """
    if step.shell:
        return interpolate(step.run, lookup, step=step.name, quote=shlex.quote)

    # Placeholders may contain spaces, so park them behind sentinels first.
    names: list[str] = []

    def stash(match: re.Match) -> str:
        names.append(match.group(1).strip())
        return f"\x00{len(names) - 1}\x00"

    try:
        tokens = shlex.split(_PLACEHOLDER_RE.sub(stash, step.run))
    except ValueError as e:
        raise StepExecutionError(step.name, f"Invalid command syntax: {e}") from None
    if not tokens:
        raise StepExecutionError(step.name, "Empty command")

    values: list[str] = []
    for name in names:
        value = lookup(name)
        if value is None:
            raise MissingInputError(step.name, name)
        values.append(value)
    return [_SENTINEL_RE.sub(lambda m: values[int(m.group(1))], tok) for tok in tokens]


def parse_output_file(text: str) -> dict[str, str]:
    """Parse ``key=value`` lines and ``key<<DELIM`` ... ``DELIM`` blocks."""
    outputs: dict[str, str] = {}
    lines = text.splitlines()
    i = 0
    while i < len(lines):
        line = lines[i]
        i += 1
        if not line.strip():
            continue
        heredoc = _HEREDOC_RE.match(line)
        if heredoc:
            key, delimiter = heredoc.groups()
            body: list[str] = []
            while i < len(lines) and lines[i] != delimiter:
                body.append(lines[i])
                i += 1
            i += 1  # skip the delimiter
            outputs[key] = "\n".join(body)
            continue
        kv = _KEYVALUE_RE.match(line)
        if kv:
            outputs[kv.group(1)] = kv.group(2)
        else:
            logger.warning("Ignoring malformed output line: %r", line)
    return outputs


def _resolve_secrets(
    step: PipelineStep,
    resolver: SecretResolver | None,
    masker: SecretMasker,
) -> dict[str, str]:
    env: dict[str, str] = {}
    for env_name, secret_name in step.secrets.items():
        if resolver is None:
            raise SecretNotFoundError(secret_name)
        value = resolver.resolve(secret_name)
        masker.register(value)
        env[env_name] = value
    return env


def _resolve_cwd(step: PipelineStep, base_dir: Path | None) -> str | None:
    if step.working_dir is None:
        return str(base_dir) if base_dir is not None else None
    path = Path(step.working_dir)
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    return str(path.resolve())


def execute_step(
    step: PipelineStep,
    context: Mapping[str, str],
    *,
    pipeline_inputs: Mapping[str, str] | None = None,
    pipeline_env: Mapping[str, str] | None = None,
    secrets: SecretResolver | None = None,
    masker: SecretMasker | None = None,
    base_dir: Path | None = None,
    cancel: CancelToken | None = None,
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
) -> StepResult:
    """Execute a single pipeline step.

    Step-attributable failures (missing input or secret, launch failure,
    non-zero exit, timeout) are returned as a Failed :class:`StepResult`.

    Raises:
        RunCancelledError: If *cancel* fires while the step's process runs.
    """
    start = time.monotonic()
    masker = masker or SecretMasker()
    lookup = _make_lookup(step, context, pipeline_inputs or {})

    if step.enabled_when is not None and not eval_condition(
        step.enabled_when, lookup, step=step.name
    ):
        logger.debug("Step '%s' skipped: condition not met", step.name)
        return StepResult(
            name=step.name,
            status=StepStatus.SKIPPED,
            skip_reason=f"Condition not met: {step.enabled_when}",
            duration_ms=_elapsed_ms(start),
        )

    try:
        for name in step.inputs:
            if lookup(name) is None:
                raise MissingInputError(step.name, name)
        command = render_command(step, lookup)
        env = scrub_env()
        for source in (pipeline_env or {}, step.env):
            env.update({k: interpolate(v, lookup, step=step.name) for k, v in source.items()})
        env.update(_resolve_secrets(step, secrets, masker))
    except MissingInputError as e:
        logger.warning("Step '%s' cannot start: %s", step.name, e)
        return StepResult(
            name=step.name,
            status=StepStatus.FAILED,
            error=str(e),
            error_kind="missing-input",
            duration_ms=_elapsed_ms(start),
        )
    except SecretNotFoundError as e:
        logger.warning("Step '%s' cannot start: %s", step.name, e)
        return StepResult(
            name=step.name,
            status=StepStatus.FAILED,
            error=str(e),
            error_kind="secret",
            duration_ms=_elapsed_ms(start),
        )
    except StepExecutionError as e:
        return StepResult(
            name=step.name,
            status=StepStatus.FAILED,
            error=str(e),
            error_kind="execution",
            duration_ms=_elapsed_ms(start),
        )

    fd, output_path = tempfile.mkstemp(prefix="shipline-", suffix=".out")
    os.close(fd)
    env[OUTPUT_FILE_ENV] = output_path
    logger.debug("Step '%s' running: %s", step.name, masker.mask(str(command)))

    output = ""
    try:
        try:
            outcome = run_process(
                command,
                env=env,
                timeout=step.timeout_seconds,
                cwd=_resolve_cwd(step, base_dir),
                shell=step.shell,
                cancel=cancel,
            )
        except SubprocessCancelled as e:
            raise RunCancelledError(e.reason) from None
        except SubprocessTimeout as e:
            raise StepExecutionError(step.name, str(e)) from None
        except (OSError, ValueError) as e:
            # ValueError: Popen rejects NUL bytes in argv and env
            raise StepExecutionError(step.name, f"Could not launch command: {e}") from None

        stdout = masker.mask(outcome.stdout)
        stderr = masker.mask(outcome.stderr)
        output = format_process_output(
            stdout, stderr, returncode=outcome.returncode, max_chars=max_output_chars
        )
        if outcome.returncode != 0:
            raise StepExecutionError(
                step.name,
                f"Command exited with status {outcome.returncode}",
                exit_code=outcome.returncode,
            )

        try:
            raw = Path(output_path).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise StepExecutionError(step.name, f"Could not read step outputs: {e}") from None
        outputs = {key: masker.mask(value) for key, value in parse_output_file(raw).items()}
        outputs["stdout"] = stdout.strip()
    except StepExecutionError as e:
        logger.warning("Step '%s' failed: %s", step.name, e)
        return StepResult(
            name=step.name,
            status=StepStatus.FAILED,
            output=output,
            error=str(e),
            error_kind="execution",
            exit_code=e.exit_code,
            duration_ms=_elapsed_ms(start),
        )
    finally:
        try:
            os.unlink(output_path)
        except OSError:
            pass

    return StepResult(
        name=step.name,
        status=StepStatus.SUCCEEDED,
        output=output,
        outputs=outputs,
        exit_code=outcome.returncode,
        duration_ms=_elapsed_ms(start),
    )
