"""Shared test helpers for diligence tests."""

from diligence.core.models import LegalFindings, StructuredFinding


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Awaitable sleep that records requested delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_finding(
    title: str,
    description: str = "",
    severity: str = "info",
    verification_level: str = "low",
    source: str | None = None,
    citations: list[str] | None = None,
) -> StructuredFinding:
    return StructuredFinding(
        title=title,
        description=description,
        severity=severity,
        verification_level=verification_level,
        source=source,
        citations=citations or [],
    )


def legal_findings(
    litigation: list[StructuredFinding] | None = None,
    regulatory: list[StructuredFinding] | None = None,
    content: str = "Litigation review of public court records.",
) -> LegalFindings:
    return LegalFindings(
        content=content,
        summary="Legal research summary",
        litigation=litigation or [],
        regulatory=regulatory or [],
    )
