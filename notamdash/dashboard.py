"""NOTAM dashboard orchestration: filters, search, selection and map sync."""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from notamdash.credentials import CredentialProvider
from notamdash.errors import AuthError, GatewayError, NotFoundError
from notamdash.map_surface import MapHandle, MapSurfaceController
from notamdash.models.filters import MIN_SEARCH_LENGTH, FilterState
from notamdash.models.notam import NotamRecord
from notamdash.notam_client import NotamGateway
from notamdash.stats import NotamStats, aggregate

logger = logging.getLogger(__name__)

LIST = 'list'
SEARCH = 'search'
DETAIL = 'detail'

TRANSPORT_MESSAGE = "Failed to load NOTAM data. Please try again later."
AUTH_MESSAGE = "Your session has expired. Credentials were refreshed, please try again."
UNEXPECTED_MESSAGE = "Something went wrong loading NOTAM data."
DETAIL_TRANSPORT_MESSAGE = "Failed to load NOTAM details. Please try again later."

# UI filter names -> FilterState fields
FILTER_ALIASES = {'type': 'category', 'dateRange': 'date_range'}


@dataclass
class OperationStatus:
    loading: bool = False
    error: Optional[str] = None


class NotamDashboard:
    """
    Drives the NOTAM gateway from filter/search/selection changes and
    pushes results into the stats and the map.

    Only the latest list/search request may replace the records; a detail
    result is only applied while its selection is still open.
    """

    def __init__(self, gateway: NotamGateway, credentials: CredentialProvider,
                 map_controller: Optional[MapSurfaceController] = None,
                 filters: Optional[FilterState] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.gateway = gateway
        self.credentials = credentials
        self.map_controller = map_controller
        self.map_handle: Optional[MapHandle] = None
        self.clock = clock

        if map_controller is not None and map_controller.on_select is None:
            map_controller.on_select = self._on_marker_selected

        self.filters = filters or FilterState()
        self.records: List[NotamRecord] = []
        self.stats: NotamStats = aggregate([], self._now())
        self.selection: Optional[str] = None
        self.detail: Optional[NotamRecord] = None
        self.status: Dict[str, OperationStatus] = {
            LIST: OperationStatus(),
            SEARCH: OperationStatus(),
            DETAIL: OperationStatus(),
        }

        self._records_seq = 0
        self._issued = {LIST: 0, SEARCH: 0}
        self._active_op = LIST
        self._detail_seq = 0
        self._map_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Read state
    # ------------------------------------------------------------------

    @property
    def loading(self) -> bool:
        return self.status[LIST].loading or self.status[SEARCH].loading

    @property
    def error(self) -> Optional[str]:
        return self.status[self._active_op].error

    @property
    def detail_loading(self) -> bool:
        return self.status[DETAIL].loading

    @property
    def detail_error(self) -> Optional[str]:
        return self.status[DETAIL].error

    def state(self) -> Dict[str, Any]:
        """Snapshot of everything a view needs to render."""
        return {
            'filters': self.filters,
            'records': list(self.records),
            'stats': self.stats,
            'loading': self.loading,
            'error': self.error,
            'selection': self.selection,
            'detail': self.detail,
            'detail_loading': self.detail_loading,
            'detail_error': self.detail_error,
        }

    def _now(self) -> datetime:
        return self.clock() if self.clock else datetime.now(timezone.utc)

    def _map_ready(self) -> bool:
        return self.map_controller is not None and self.map_handle is not None and self.map_handle.is_ready

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def start(self, container: Any = None) -> bool:
        """Create the map (if any) and run the first structured fetch."""
        if self.map_controller is not None and self.map_handle is None:
            self.map_handle = self.map_controller.initialize(container)
        return await self.refresh()

    async def refresh(self) -> bool:
        """Re-issue the structured list fetch with the current filters."""
        return await self._load_list()

    async def set_filters(self, **changes) -> bool:
        """
        Change structured filters.

        Clears the open detail. While a search is active the new filters are
        stored and take effect once the search is cleared.

        Raises:
            ValueError: unknown filter value
        """
        self.filters = self.filters.with_changes(**changes)
        logger.info(f"Filters changed: {self.filters.to_params()}")
        await self._drop_selection(replot=False)

        if self.filters.search_active:
            logger.info("Search active, structured fetch deferred")
            return False
        return await self._load_list()

    async def change_filter(self, name: str, value: Any) -> bool:
        """UI callback form: change_filter('region', 'europe')."""
        return await self.set_filters(**{FILTER_ALIASES.get(name, name): value})

    async def set_search(self, term: str) -> bool:
        """
        Update the search term.

        More than two characters runs a search; an empty term goes back to
        the structured list; one or two characters change nothing.
        """
        self.filters = self.filters.with_changes(search=term)
        stripped = term.strip()

        if len(stripped) >= MIN_SEARCH_LENGTH:
            token = self.credentials.token
            return await self._load(SEARCH, lambda: self.gateway.search(stripped, token))
        if not stripped:
            return await self._load_list()
        return False

    async def select(self, notam_id: str) -> bool:
        """
        Open the detail view for a NOTAM.

        The map highlight is applied whether or not the detail fetch works.

        Returns:
            True when the detail fetch succeeded and was applied
        """
        self._detail_seq += 1
        seq = self._detail_seq
        self.selection = notam_id
        self.detail = None
        status = self.status[DETAIL]
        status.loading = True
        status.error = None
        list_record = self._find_record(notam_id)
        applied = False

        try:
            fetched = await self.gateway.fetch_detail(notam_id, self.credentials.token)
            if seq != self._detail_seq:
                logger.debug(f"Ignoring late detail for {notam_id}")
                return False
            base = self._find_record(notam_id) or list_record
            self.detail = base.enrich(fetched) if base is not None else fetched
            applied = True
        except Exception as e:
            message = await self._describe_failure(DETAIL, e, notam_id)
            if seq != self._detail_seq:
                return False
            status.error = message
            self.detail = self._find_record(notam_id) or list_record
        finally:
            if seq == self._detail_seq:
                status.loading = False

        await self._show_selection(seq, notam_id)
        return applied

    async def close_detail(self) -> None:
        """Close the detail view and replot without emphasis."""
        await self._drop_selection(replot=True)

    async def close(self) -> None:
        """Ignore anything still in flight and dispose the map."""
        self._records_seq += 1
        self._detail_seq += 1
        if self.map_controller is not None and self.map_handle is not None:
            await self._update_map('dispose', lambda: self.map_controller.dispose(self.map_handle),
                                   require_ready=False)
        for task in list(self._tasks):
            task.cancel()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_record(self, notam_id: str) -> Optional[NotamRecord]:
        for record in self.records:
            if record.notam_id == notam_id:
                return record
        return None

    def _on_marker_selected(self, notam_id: str) -> None:
        """Marker click from the map; runs select() on the current loop."""
        loop = asyncio.get_running_loop()
        task = loop.create_task(self.select(notam_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _load_list(self) -> bool:
        filters = self.filters
        token = self.credentials.token
        return await self._load(LIST, lambda: self.gateway.fetch_list(filters, token))

    async def _load(self, op: str, call: Callable[[], Awaitable[List[NotamRecord]]]) -> bool:
        """
        Run a list/search request under the last-request-wins rule.

        Returns:
            True when the result was applied
        """
        self._records_seq += 1
        seq = self._records_seq
        self._issued[op] = seq
        self._active_op = op
        status = self.status[op]
        status.loading = True

        try:
            records = list(await call())
            if seq != self._records_seq:
                logger.debug(f"Discarding stale {op} response (#{seq}, latest #{self._records_seq})")
                return False
            stats = aggregate(records, self._now())
        except Exception as e:
            message = await self._describe_failure(op, e)
            if seq == self._records_seq:
                status.error = message
            return False
        finally:
            if self._issued[op] == seq:
                status.loading = False

        self.records = records
        self.stats = stats
        status.error = None
        logger.info(f"{op.capitalize()} applied: {stats.total} NOTAM(s), {stats.active_today} active")
        await self._update_map('reconcile', lambda: self.map_controller.reconcile(self.map_handle, self.records))
        return True

    async def _describe_failure(self, op: str, error: Exception, notam_id: Optional[str] = None) -> str:
        """Log a failed gateway call, refresh credentials on auth errors, and return the user message."""
        if isinstance(error, AuthError):
            logger.warning(f"{op} request rejected (HTTP {error.status}), refreshing credentials")
            await self._refresh_credentials()
            return AUTH_MESSAGE
        if isinstance(error, NotFoundError):
            logger.warning(f"NOTAM {notam_id} not found upstream")
            return f"NOTAM {notam_id} is no longer available."
        if isinstance(error, GatewayError):
            logger.error(f"{op} request failed: {error}")
            return DETAIL_TRANSPORT_MESSAGE if op == DETAIL else TRANSPORT_MESSAGE
        logger.error(f"Unexpected error during {op}: {error}", exc_info=error)
        return UNEXPECTED_MESSAGE

    async def _refresh_credentials(self) -> None:
        try:
            await self.credentials.refresh_token()
        except Exception as e:
            logger.error(f"Credential refresh failed: {e}")

    async def _update_map(self, action: str, change: Callable[[], Any], require_ready: bool = True) -> bool:
        """
        Run a map change under the map lock.

        Map failures are logged and reported as False; they never reach callers.
        """
        if require_ready and not self._map_ready():
            return False
        async with self._map_lock:
            try:
                change()
            except Exception as e:
                logger.error(f"Map {action} failed: {e}", exc_info=True)
                return False
        return True

    async def _show_selection(self, seq: int, notam_id: str) -> None:
        def emphasize():
            if seq != self._detail_seq:
                return
            self.map_controller.highlight(self.map_handle, notam_id)
            geometry = self.detail.geometry if self.detail is not None else None
            if geometry is not None and self.status[DETAIL].error is None:
                self.map_controller.draw_geometry(self.map_handle, geometry)
            else:
                self.map_controller.clear_geometry(self.map_handle)

        await self._update_map('highlight', emphasize)

    async def _drop_selection(self, replot: bool) -> None:
        self._detail_seq += 1
        self.selection = None
        self.detail = None
        self.status[DETAIL] = OperationStatus()

        def clear():
            self.map_controller.clear_geometry(self.map_handle)
            self.map_controller.clear_highlight(self.map_handle)
            if replot:
                self.map_controller.reconcile(self.map_handle, self.records)

        await self._update_map('clear selection', clear)
