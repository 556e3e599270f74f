"""Read-only access to the plan metadata kept in the record and verify database.

Failures of the database never stop a plan check: the repository logs them and reports the value as absent.
"""
import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

EXTENDED_RANGE_QUERY = """
SELECT dbo.ExternalField.GantryRtnExt
FROM dbo.RTPlan, dbo.PlanSetup, dbo.Radiation, dbo.ExternalFieldCommon, dbo.ExternalField
WHERE (dbo.PlanSetup.PlanSetupSer = dbo.RTPlan.PlanSetupSer)
  AND (dbo.Radiation.PlanSetupSer = dbo.PlanSetup.PlanSetupSer)
  AND (dbo.ExternalFieldCommon.RadiationSer = dbo.Radiation.RadiationSer)
  AND (dbo.ExternalField.RadiationSer = dbo.ExternalFieldCommon.RadiationSer)
  AND (dbo.RTPlan.PlanUID = {plan_uid})
  AND (dbo.Radiation.RadiationId = {field_id})
"""

CT_COUCH_VERTICAL_QUERY = """
SELECT DISTINCT dbo.Slice.CouchVrt
FROM dbo.Series, dbo.Slice
WHERE (dbo.Slice.SeriesSer = dbo.Series.SeriesSer)
  AND (dbo.Series.SeriesUID = {series_uid})
"""

_PLACEHOLDERS = {
    "qmark": lambda name: "?",
    "format": lambda name: "%s",
    "numeric": None,
    "named": lambda name: f":{name}",
    "pyformat": lambda name: f"%({name})s",
}


class PlanRepository(ABC):
    """Interface of the plan metadata needed by the collision check."""

    @abstractmethod
    def get_extended_range_code(self, plan_uid: str, beam_id: str) -> str | None:
        """The extended gantry range code (NN, NE, EN or EE) of a beam. None if absent."""

    @abstractmethod
    def get_ct_couch_vertical(self, series_uid: str) -> float | None:
        """The couch vertical reading (cm) recorded with the CT series. None if absent."""

    def get_extended_range_codes(self, plan_uid: str, beam_ids: list[str]) -> dict[str, str]:
        """The extended range codes of the beams that have one."""
        codes = {}
        for beam_id in beam_ids:
            code = self.get_extended_range_code(plan_uid, beam_id)
            if code:
                codes[beam_id] = code
        return codes


class InMemoryPlanRepository(PlanRepository):
    """Repository backed by dictionaries, e.g. values exported beforehand or test fixtures."""

    def __init__(
        self,
        extended_range_codes: Mapping[tuple[str, str], str] | None = None,
        ct_couch_verticals: Mapping[str, float] | None = None,
    ):
        """
        Parameters
        ----------
        extended_range_codes : Mapping[tuple[str, str], str], optional
            Extended range code per (plan UID, beam id).
        ct_couch_verticals : Mapping[str, float], optional
            CT couch vertical reading in cm per series UID.
        """
        self.extended_range_codes = dict(extended_range_codes or {})
        self.ct_couch_verticals = dict(ct_couch_verticals or {})

    def get_extended_range_code(self, plan_uid: str, beam_id: str) -> str | None:
        return self.extended_range_codes.get((plan_uid, beam_id))

    def get_ct_couch_vertical(self, series_uid: str) -> float | None:
        return self.ct_couch_verticals.get(series_uid)


class DbApiPlanRepository(PlanRepository):
    """Repository running parameterized queries through a DB-API 2.0 connection."""

    def __init__(self, connection: Any, paramstyle: str = "qmark"):
        """
        Parameters
        ----------
        connection : DB-API connection
            An open connection to the record and verify database. It is not closed by the repository.
        paramstyle : str
            The paramstyle of the driver: "qmark", "format", "named" or "pyformat".
        """
        if _PLACEHOLDERS.get(paramstyle) is None:
            raise ValueError(f"Unsupported paramstyle: {paramstyle}")
        self.connection = connection
        self.paramstyle = paramstyle
        # DB-API drivers expose their exception hierarchy on the connection (optional extension)
        self._errors = getattr(connection, "Error", Exception)

    def get_extended_range_code(self, plan_uid: str, beam_id: str) -> str | None:
        row = self._fetch_last(EXTENDED_RANGE_QUERY, {"plan_uid": plan_uid, "field_id": beam_id})
        if row is None or row[0] is None:
            return None
        return str(row[0]).strip()

    def get_ct_couch_vertical(self, series_uid: str) -> float | None:
        row = self._fetch_last(CT_COUCH_VERTICAL_QUERY, {"series_uid": series_uid})
        if row is None or row[0] is None:
            return None
        value = float(row[0])
        return None if math.isnan(value) else value

    def _fetch_last(self, query: str, params: dict[str, Any]) -> tuple | None:
        placeholder = _PLACEHOLDERS[self.paramstyle]
        sql = query.format(**{name: placeholder(name) for name in params})
        args = params if self.paramstyle in ("named", "pyformat") else tuple(params.values())
        try:
            cursor = self.connection.cursor()
            try:
                cursor.execute(sql, args)
                rows = cursor.fetchall()
            finally:
                cursor.close()
        except self._errors as e:
            logger.warning(f"Database query failed, value treated as absent: {e}")
            return None
        # the query may return several rows; the last one wins
        return tuple(rows[-1]) if rows else None
