"""Flight minima board: per-flight target airport weather against minima."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from notamdash.minima import MinimaRegistry, MinimaResult
from notamdash.models.notam import parse_timestamp

logger = logging.getLogger(__name__)


class FlightPhase(Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass
class Flight:
    callsign: str
    depicao: str
    arricao: str
    alticao: str
    std: datetime
    sta: datetime
    eta: datetime
    # ICAO -> weather report ({'ceiling': ..., 'visibility': ..., 'wind': ...})
    weather: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def progress(self, now: Optional[datetime] = None) -> float:
        """Percent of the STD..ETA window elapsed, clamped to 0..100."""
        now = now or datetime.now(timezone.utc)
        total = (self.eta - self.std).total_seconds()
        if total <= 0:
            return 100.0 if now >= self.std else 0.0
        elapsed = max(0.0, (now - self.std).total_seconds())
        return min(100.0, elapsed / total * 100.0)

    def phase(self, now: Optional[datetime] = None) -> FlightPhase:
        now = now or datetime.now(timezone.utc)
        if self.std > now:
            return FlightPhase.SCHEDULED
        if now > self.eta:
            return FlightPhase.COMPLETED
        return FlightPhase.ACTIVE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Flight':
        """
        Build a Flight from a feed entry.

        Raises:
            ValueError: missing callsign or times
        """
        if not data.get('callsign'):
            raise ValueError("Flight without a callsign")
        times = {}
        for key in ('std', 'sta', 'eta'):
            value = parse_timestamp(data.get(key))
            if value is None:
                raise ValueError(f"Flight {data['callsign']} has no {key.upper()}")
            times[key] = value
        return cls(
            callsign=data['callsign'],
            depicao=(data.get('depicao') or '').upper(),
            arricao=(data.get('arricao') or '').upper(),
            alticao=(data.get('alticao') or '').upper(),
            weather={k.upper(): v for k, v in (data.get('weather') or {}).items()},
            **times,
        )


class FlightBoard:
    """
    Tracks flights, which airport each one is checked against (arrival or
    alternate), and the minima for each callsign.
    """

    def __init__(self, flights: Iterable[Flight] = (), minima: Optional[MinimaRegistry] = None):
        self.flights: Dict[str, Flight] = {f.callsign: f for f in flights}
        self.minima = minima or MinimaRegistry()
        self._use_alternate: Dict[str, bool] = {}

    def add(self, flight: Flight) -> None:
        self.flights[flight.callsign] = flight

    def set_alternate(self, callsign: str, use_alternate: bool) -> None:
        self._use_alternate[callsign] = use_alternate

    def toggle_alternate(self, callsign: str) -> bool:
        self._use_alternate[callsign] = not self._use_alternate.get(callsign, False)
        return self._use_alternate[callsign]

    def target_icao(self, flight: Flight) -> str:
        return flight.alticao if self._use_alternate.get(flight.callsign) else flight.arricao

    def evaluate(self, flight: Flight) -> MinimaResult:
        """Check the target airport's weather against the flight's minima."""
        report = flight.weather.get(self.target_icao(flight), {})
        return self.minima.evaluate(flight.callsign, report)

    def below_minima(self) -> List[str]:
        """Callsigns whose target airport is below minima (or has no weather)."""
        failing = [cs for cs, f in self.flights.items() if not self.evaluate(f).overall_met]
        if failing:
            logger.info(f"{len(failing)} flight(s) below minima: {', '.join(failing)}")
        return failing
