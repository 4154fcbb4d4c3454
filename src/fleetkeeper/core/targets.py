from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Target:
    name: str
    region: str
    context: str
    aws_profile: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "region": self.region,
            "context": self.context,
            "aws_profile": self.aws_profile,
        }


def select_targets(targets: list[Target], names: list[str]) -> list[Target]:
    """Keep the targets named in ``names`` (all of them when empty)."""
    if not names:
        return list(targets)
    known = {target.name for target in targets}
    unknown = [name for name in names if name not in known]
    if unknown:
        raise ValueError(f"unknown targets: {', '.join(unknown)}")
    wanted = set(names)
    return [target for target in targets if target.name in wanted]
