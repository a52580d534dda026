"""Tests for the dashboard orchestrator."""
import asyncio

import pytest

from notamdash.credentials import CredentialProvider
from notamdash.dashboard import (
    AUTH_MESSAGE, DETAIL_TRANSPORT_MESSAGE, TRANSPORT_MESSAGE, UNEXPECTED_MESSAGE, NotamDashboard,
)
from notamdash.errors import AuthError, TransportError
from notamdash.map_surface import MapState, MapSurfaceController
from notamdash.models.filters import DateRange, FilterState, Region
from notamdash.models.notam import NotamCategory, NotamRecord

from conftest import (
    SAMPLE_NOTAMS, ControlledGateway, FakeMapBackend, ScriptedGateway, make_records, settle,
)

DETAIL_C = dict(
    SAMPLE_NOTAMS[2],
    issuedBy='EHAA',
    altitude='SFC-FL100',
    geometry={'type': 'circle', 'center': {'lat': 52.31, 'lng': 4.77}, 'radius': 25},
)


def ids(records):
    return [r.notam_id for r in records]


class BrokenMapBackend(FakeMapBackend):
    """Map backend that fails to render markers."""

    def add_marker(self, surface, position, style, parent=None):
        raise RuntimeError("renderer gone")


class BrokenCredentials(CredentialProvider):
    """Token provider whose refresh always fails."""

    def __init__(self):
        self.attempts = 0

    @property
    def token(self):
        return 'expired'

    async def refresh_token(self):
        self.attempts += 1
        raise RuntimeError("token endpoint down")


@pytest.fixture
def controller(backend):
    return MapSurfaceController(backend, cluster_markers=False, highlight_radius_nm=5, highlight_zoom=10)


@pytest.fixture
def gateway(records):
    return ScriptedGateway(
        list_result=records,
        search_result=[records[1]],
        details={'C9012/23': NotamRecord.from_api_dict(DETAIL_C)},
    )


@pytest.fixture
def dashboard(gateway, credentials, controller, clock):
    return NotamDashboard(gateway, credentials, controller, clock=clock)


class TestLoading:
    """Test cases for list fetches, stats and map sync."""

    def test_start(self, dashboard, gateway, controller):
        """Test that start creates the map, fetches and plots."""
        assert asyncio.run(dashboard.start('map'))

        assert dashboard.map_handle.state == MapState.READY
        assert ids(dashboard.records) == ids(make_records())
        assert dashboard.stats.total == 5
        assert dashboard.stats.by_category['navaid'] == 1
        assert sorted(controller.marker_ids(dashboard.map_handle)) == sorted(ids(dashboard.records))
        assert not dashboard.loading
        assert dashboard.error is None
        assert gateway.calls == [('list', FilterState(), 'test-token')]

    def test_without_map(self, gateway, credentials, clock):
        dashboard = NotamDashboard(gateway, credentials, clock=clock)

        assert asyncio.run(dashboard.start())
        assert dashboard.map_handle is None
        assert dashboard.stats.total == 5

    def test_set_filters_fetches_with_new_filters(self, dashboard, gateway, records):
        gateway.list_result = [records[1], records[2]]

        async def scenario():
            await dashboard.start('map')
            return await dashboard.set_filters(region='europe', date_range='week')

        assert asyncio.run(scenario())
        sent = gateway.calls[-1][1]
        assert sent.region == Region.EUROPE
        assert sent.date_range == DateRange.WEEK
        assert dashboard.stats.total == 2
        assert dashboard.stats.by_region == {'E': 2}

    def test_change_filter_aliases(self, dashboard, gateway):
        """Test the UI names 'type' and 'dateRange'."""
        async def scenario():
            await dashboard.change_filter('type', 'obstacle')
            await dashboard.change_filter('dateRange', 'today')

        asyncio.run(scenario())

        assert dashboard.filters.category == NotamCategory.OBSTACLE
        assert dashboard.filters.date_range == DateRange.TODAY
        assert len(gateway.calls) == 2

    def test_reset_filters(self, dashboard, gateway):
        async def scenario():
            await dashboard.set_filters(region='asia', category='airspace', altitude=(0, 5000))
            await dashboard.set_filters(region='all', category='all', date_range='current', altitude=(None, None))

        asyncio.run(scenario())

        assert dashboard.filters == FilterState()
        assert gateway.calls[-1][1] == FilterState()

    def test_invalid_filter_raises(self, dashboard):
        with pytest.raises(ValueError):
            asyncio.run(dashboard.set_filters(region='moon'))

    def test_refresh_is_unconditional(self, dashboard, gateway):
        async def scenario():
            await dashboard.start('map')
            await dashboard.refresh()
            await dashboard.refresh()

        asyncio.run(scenario())
        assert [c[0] for c in gateway.calls] == ['list', 'list', 'list']

    def test_state_snapshot(self, dashboard):
        asyncio.run(dashboard.start('map'))
        state = dashboard.state()

        assert len(state['records']) == 5
        assert state['loading'] is False
        assert state['selection'] is None
        assert state['stats'].total == 5


class TestLastRequestWins:
    """Test cases for out-of-order responses."""

    @pytest.fixture
    def controlled(self):
        return ControlledGateway()

    @pytest.fixture
    def dashboard(self, controlled, credentials, controller, clock):
        return NotamDashboard(controlled, credentials, controller, clock=clock)

    def test_loading_flag(self, dashboard, controlled, records):
        async def scenario():
            task = asyncio.create_task(dashboard.refresh())
            await settle()
            assert dashboard.loading
            controlled.calls[0].future.set_result(records)
            await task
            assert not dashboard.loading

        asyncio.run(scenario())

    def test_older_response_is_discarded(self, dashboard, controlled, controller, records):
        """Test that a response arriving after a newer one never overwrites it."""
        async def scenario():
            dashboard.map_handle = controller.initialize('map')
            first = asyncio.create_task(dashboard.set_filters(region='europe'))
            await settle()
            second = asyncio.create_task(dashboard.set_filters(region='asia'))
            await settle()

            europe, asia = controlled.of_op('list')
            asia.future.set_result([records[3]])
            assert await second is True
            assert not dashboard.loading

            europe.future.set_result([records[1], records[2]])
            assert await first is False

        asyncio.run(scenario())

        assert ids(dashboard.records) == ['D3456/23']
        assert dashboard.stats.total == 1
        assert controller.marker_ids(dashboard.map_handle) == ['D3456/23']

    def test_stale_error_is_ignored(self, dashboard, controlled, records):
        async def scenario():
            first = asyncio.create_task(dashboard.refresh())
            await settle()
            second = asyncio.create_task(dashboard.set_search('crane'))
            await settle()

            listing, searching = controlled.calls
            searching.future.set_result([records[1]])
            await second
            listing.future.set_exception(TransportError("timeout"))
            assert await first is False

        asyncio.run(scenario())

        assert dashboard.error is None
        assert ids(dashboard.records) == ['B5678/23']
        assert not dashboard.loading

    def test_search_then_clear_while_search_in_flight(self, dashboard, controlled, records):
        """Test that clearing the search supersedes a slow search response."""
        async def scenario():
            searching = asyncio.create_task(dashboard.set_search('runway'))
            await settle()
            listing = asyncio.create_task(dashboard.set_search(''))
            await settle()

            search_call, list_call = controlled.calls
            list_call.future.set_result(records)
            await listing
            search_call.future.set_result([records[0]])
            assert await searching is False

        asyncio.run(scenario())
        assert len(dashboard.records) == 5


class TestErrors:
    """Test cases for gateway failures."""

    def test_auth_error_refreshes_once_and_keeps_records(self, dashboard, gateway, credentials, controller):
        async def scenario():
            await dashboard.start('map')
            gateway.list_error = AuthError("HTTP 401 from NOTAM API", status=401)
            return await dashboard.refresh()

        assert asyncio.run(scenario()) is False

        assert credentials.refresh_count == 1
        assert dashboard.error == AUTH_MESSAGE
        assert len(dashboard.records) == 5
        assert len(controller.marker_ids(dashboard.map_handle)) == 5
        assert [c[0] for c in gateway.calls] == ['list', 'list']

    def test_success_clears_error(self, dashboard, gateway):
        async def scenario():
            gateway.list_error = TransportError("HTTP 500 from NOTAM API", status=500)
            await dashboard.start('map')
            assert dashboard.error == TRANSPORT_MESSAGE
            gateway.list_error = None
            await dashboard.refresh()

        asyncio.run(scenario())
        assert dashboard.error is None

    def test_unexpected_error(self, dashboard, gateway):
        gateway.search_error = RuntimeError("boom")

        asyncio.run(dashboard.set_search('runway'))

        assert dashboard.error == UNEXPECTED_MESSAGE
        assert not dashboard.loading

    def test_refresh_failure_does_not_propagate(self, gateway, clock):
        credentials = BrokenCredentials()
        dashboard = NotamDashboard(gateway, credentials, clock=clock)
        gateway.list_error = AuthError("HTTP 403 from NOTAM API", status=403)

        assert asyncio.run(dashboard.refresh()) is False

        assert credentials.attempts == 1
        assert dashboard.error == AUTH_MESSAGE

    def test_detail_for_other_id_stays_inside(self, dashboard, gateway):
        """Test that a detail carrying a different id becomes detail_error, not an exception."""
        gateway.details['A1234/23'] = NotamRecord.from_api_dict(dict(SAMPLE_NOTAMS[0], id='a1234/23'))

        async def scenario():
            await dashboard.start('map')
            return await dashboard.select('A1234/23')

        assert asyncio.run(scenario()) is False

        assert dashboard.selection == 'A1234/23'
        assert dashboard.detail_error == UNEXPECTED_MESSAGE
        assert dashboard.detail.notam_id == 'A1234/23'
        assert not dashboard.detail_loading
        assert dashboard.map_handle.layers.highlight is not None

    def test_marker_click_with_bad_detail(self, dashboard, gateway):
        gateway.details['A1234/23'] = NotamRecord.from_api_dict(dict(SAMPLE_NOTAMS[0], id='OTHER/23'))

        async def scenario():
            await dashboard.start('map')
            marker = next(m for m in dashboard.map_handle.surface.markers()
                          if m.style.tooltip.startswith('A1234/23'))
            marker.style.on_click()
            tasks = list(dashboard._tasks)
            await settle()
            return [t.exception() for t in tasks]

        assert asyncio.run(scenario()) == [None]
        assert dashboard.detail_error == UNEXPECTED_MESSAGE

    def test_map_failure_does_not_propagate(self, gateway, credentials, clock):
        """Test that a broken map keeps the records and stats and raises nothing."""
        controller = MapSurfaceController(BrokenMapBackend(), cluster_markers=False)
        dashboard = NotamDashboard(gateway, credentials, controller, clock=clock)

        async def scenario():
            loaded = await dashboard.start('map')
            await dashboard.select('C9012/23')
            await dashboard.close_detail()
            return loaded

        assert asyncio.run(scenario()) is True
        assert dashboard.stats.total == 5
        assert dashboard.error is None
        assert dashboard.detail is None

    def test_detail_auth_error(self, dashboard, gateway, credentials):
        async def scenario():
            await dashboard.start('map')
            gateway.detail_error = AuthError("HTTP 401 from NOTAM API", status=401)
            return await dashboard.select('C9012/23')

        assert asyncio.run(scenario()) is False
        assert credentials.refresh_count == 1
        assert dashboard.detail_error == AUTH_MESSAGE
        assert dashboard.error is None


class TestSearch:
    """Test cases for the search term."""

    def test_short_term_is_noop(self, dashboard, gateway):
        async def scenario():
            await dashboard.start('map')
            return await dashboard.set_search('eg')

        assert asyncio.run(scenario()) is False
        assert len(gateway.calls) == 1
        assert len(dashboard.records) == 5

    def test_search_replaces_records(self, dashboard, gateway, controller):
        async def scenario():
            await dashboard.start('map')
            return await dashboard.set_search('  crane ')

        assert asyncio.run(scenario())
        assert gateway.calls[-1] == ('search', 'crane', 'test-token')
        assert ids(dashboard.records) == ['B5678/23']
        assert dashboard.stats.total == 1
        assert controller.marker_ids(dashboard.map_handle) == ['B5678/23']

    def test_empty_term_restores_list(self, dashboard, gateway):
        async def scenario():
            await dashboard.start('map')
            await dashboard.set_search('crane')
            return await dashboard.set_search('')

        assert asyncio.run(scenario())
        assert gateway.calls[-1][0] == 'list'
        assert len(dashboard.records) == 5

    def test_filter_change_during_search_is_deferred(self, dashboard, gateway):
        """Test that filters set during a search apply once the search is cleared."""
        async def scenario():
            await dashboard.start('map')
            await dashboard.set_search('crane')
            assert await dashboard.set_filters(region='europe') is False
            assert ids(dashboard.records) == ['B5678/23']
            await dashboard.set_search('')

        asyncio.run(scenario())

        assert [c[0] for c in gateway.calls] == ['list', 'search', 'list']
        assert gateway.calls[-1][1].region == Region.EUROPE


class TestSelection:
    """Test cases for the detail view and map emphasis."""

    def test_select_merges_detail(self, dashboard, controller):
        async def scenario():
            await dashboard.start('map')
            return await dashboard.select('C9012/23')

        assert asyncio.run(scenario())

        handle = dashboard.map_handle
        assert dashboard.selection == 'C9012/23'
        assert dashboard.detail.issued_by == 'EHAA'
        assert dashboard.detail.coordinate is not None
        assert dashboard.detail_error is None
        assert not dashboard.detail_loading
        assert handle.layers.highlight is not None
        assert len(handle.layers.geometry) == 1
        assert handle.surface.view == ((52.3105, 4.7683), 10)

    def test_select_failure_falls_back_to_list_record(self, dashboard, gateway):
        async def scenario():
            await dashboard.start('map')
            gateway.detail_error = TransportError("HTTP 502 from NOTAM API", status=502)
            return await dashboard.select('C9012/23')

        assert asyncio.run(scenario()) is False

        handle = dashboard.map_handle
        assert dashboard.detail_error == DETAIL_TRANSPORT_MESSAGE
        assert dashboard.detail.notam_id == 'C9012/23'
        assert dashboard.detail.issued_by is None
        assert dashboard.error is None
        # Highlight is applied either way, geometry only on success
        assert handle.layers.highlight is not None
        assert handle.layers.geometry == []

    def test_select_not_found(self, dashboard):
        async def scenario():
            await dashboard.start('map')
            return await dashboard.select('A1234/23')

        assert asyncio.run(scenario()) is False
        assert dashboard.detail_error == "NOTAM A1234/23 is no longer available."
        assert dashboard.detail.notam_id == 'A1234/23'

    def test_select_then_close_restores_markers(self, dashboard, controller):
        """Test that closing the detail removes emphasis and keeps every marker."""
        async def scenario():
            await dashboard.start('map')
            await dashboard.select('C9012/23')
            await dashboard.close_detail()

        asyncio.run(scenario())

        handle = dashboard.map_handle
        assert dashboard.selection is None
        assert dashboard.detail is None
        assert handle.layers.highlight is None
        assert handle.layers.geometry == []
        assert handle.surface.of_kind('shape') == []
        assert len(controller.marker_ids(handle)) == 5

    def test_filter_change_drops_selection(self, dashboard):
        async def scenario():
            await dashboard.start('map')
            await dashboard.select('C9012/23')
            await dashboard.set_filters(category='navaid')

        asyncio.run(scenario())

        assert dashboard.selection is None
        assert dashboard.map_handle.layers.highlight is None
        assert dashboard.map_handle.layers.geometry == []

    def test_list_refresh_keeps_selection(self, dashboard):
        async def scenario():
            await dashboard.start('map')
            await dashboard.select('C9012/23')
            await dashboard.refresh()

        asyncio.run(scenario())

        assert dashboard.selection == 'C9012/23'
        assert dashboard.map_handle.layers.highlight is not None

    def test_marker_click_selects(self, dashboard):
        async def scenario():
            await dashboard.start('map')
            surface = dashboard.map_handle.surface
            marker = next(m for m in surface.markers() if m.style.tooltip.startswith('C9012/23'))
            marker.style.on_click()
            await settle()

        asyncio.run(scenario())

        assert dashboard.selection == 'C9012/23'
        assert dashboard.detail.issued_by == 'EHAA'


class TestDetailSequencing:
    """Test cases for late detail responses."""

    @pytest.fixture
    def controlled(self):
        return ControlledGateway()

    @pytest.fixture
    def dashboard(self, controlled, credentials, controller, clock):
        return NotamDashboard(controlled, credentials, controller, clock=clock)

    async def started(self, dashboard, controlled, records):
        task = asyncio.create_task(dashboard.start('map'))
        await settle()
        controlled.calls[0].future.set_result(records)
        await task

    def test_late_detail_for_previous_selection(self, dashboard, controlled, records):
        """Test that a reselection wins over a slower earlier detail fetch."""
        async def scenario():
            await self.started(dashboard, controlled, records)
            first = asyncio.create_task(dashboard.select('B5678/23'))
            await settle()
            second = asyncio.create_task(dashboard.select('C9012/23'))
            await settle()

            b_call, c_call = controlled.of_op('detail')
            c_call.future.set_result(NotamRecord.from_api_dict(DETAIL_C))
            assert await second is True
            b_call.future.set_result(NotamRecord.from_api_dict(dict(SAMPLE_NOTAMS[1], issuedBy='EGGN')))
            assert await first is False

        asyncio.run(scenario())

        assert dashboard.selection == 'C9012/23'
        assert dashboard.detail.notam_id == 'C9012/23'
        assert dashboard.map_handle.surface.view[0] == (52.3105, 4.7683)
        b_record = next(r for r in dashboard.records if r.notam_id == 'B5678/23')
        assert b_record.issued_by is None

    def test_close_detail_while_fetching(self, dashboard, controlled, records):
        async def scenario():
            await self.started(dashboard, controlled, records)
            task = asyncio.create_task(dashboard.select('C9012/23'))
            await settle()
            assert dashboard.detail_loading
            await dashboard.close_detail()
            controlled.of_op('detail')[0].future.set_result(NotamRecord.from_api_dict(DETAIL_C))
            assert await task is False

        asyncio.run(scenario())

        assert dashboard.selection is None
        assert dashboard.detail is None
        assert not dashboard.detail_loading
        assert dashboard.map_handle.layers.highlight is None

    def test_list_refresh_does_not_cancel_detail(self, dashboard, controlled, records):
        async def scenario():
            await self.started(dashboard, controlled, records)
            detail = asyncio.create_task(dashboard.select('C9012/23'))
            await settle()
            refresh = asyncio.create_task(dashboard.refresh())
            await settle()
            controlled.of_op('list')[-1].future.set_result(records)
            await refresh
            controlled.of_op('detail')[0].future.set_result(NotamRecord.from_api_dict(DETAIL_C))
            return await detail

        assert asyncio.run(scenario()) is True
        assert dashboard.detail.issued_by == 'EHAA'


class TestClose:
    """Test cases for shutting the dashboard down."""

    def test_close_disposes_map(self, dashboard):
        async def scenario():
            await dashboard.start('map')
            await dashboard.close()

        asyncio.run(scenario())

        assert dashboard.map_handle.state == MapState.DISPOSED

    def test_response_after_close_is_ignored(self, credentials, controller, clock, records):
        controlled = ControlledGateway()
        dashboard = NotamDashboard(controlled, credentials, controller, clock=clock)

        async def scenario():
            dashboard.map_handle = controller.initialize('map')
            task = asyncio.create_task(dashboard.refresh())
            await settle()
            await dashboard.close()
            controlled.calls[0].future.set_result(records)
            return await task

        assert asyncio.run(scenario()) is False
        assert dashboard.records == []
