"""Run context: the values steps can read as inputs."""

from __future__ import annotations

from collections.abc import Iterator, Mapping


class RunContext(Mapping[str, str]):
    """Append-only mapping from input name to value for one run.

    Seeded with the run inputs. After that only the orchestrator writes to
    it, through :meth:`publish`, and a key can never be overwritten. Secret
    values are never stored here.
    """

    def __init__(self, inputs: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(inputs or {})

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"RunContext({self._values!r})"

    def publish(self, step: str, outputs: Mapping[str, str]) -> None:
        """Store *outputs* of *step* under ``<step>.<key>``.

        Raises:
            KeyError: If any of the qualified keys already exists.
        """
        qualified = {f"{step}.{key}": value for key, value in outputs.items()}
        clashes = sorted(k for k in qualified if k in self._values)
        if clashes:
            raise KeyError(f"Run context already has {', '.join(clashes)}")
        self._values.update(qualified)
