"""
Dispatch engine and scoring tests (no server required).
Run: pytest tests/test_dispatcher.py -v
"""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from tests.factories import make_tech, make_ticket
from triage import activity
from triage.dispatcher import DispatchEngine, eta_for
from triage.errors import InvalidTransition, NotFoundError
from triage.models import DeliveryStatus, Ticket, TicketStatus, Urgency, utcnow
from triage.scoring import compute_scores, rank_technicians, select_best_technician

FLOOD = "flood in the basement"
SINK = "My kitchen sink pipe is leaking"


class TestScoring:
    def test_formula_non_emergency(self):
        tech = make_tech("t1", ["plumbing", "general"], rating=4.8, response_time_minutes=25,
                         hourly_rate=85, emergency_rate=125)
        [score] = compute_scores([tech], ["plumbing"], Urgency.MEDIUM)
        # 4.8 + 35/12 + 2*1 - 105/50
        assert score == pytest.approx(7.616667, abs=1e-6)

    def test_formula_emergency_fast_bonus_no_rate_penalty(self):
        tech = make_tech("t1", ["plumbing"], rating=4.0, response_time_minutes=20)
        [score] = compute_scores([tech], ["plumbing"], Urgency.EMERGENCY)
        assert score == pytest.approx(4.0 + 40 / 12 + 2 + 3, abs=1e-6)

    def test_more_matched_skills_score_higher(self):
        one = make_tech("a", ["plumbing"])
        two = make_tech("b", ["plumbing", "water_damage"])
        scores = compute_scores([one, two], ["plumbing", "water_damage"], Urgency.HIGH)
        assert scores[1] - scores[0] == pytest.approx(2.0)

    def test_rank_monotonic_in_rating(self):
        rival = make_tech("rival", ["plumbing"], rating=3.0)
        positions = []
        for rating in (0.0, 1.0, 2.0, 3.5, 4.0, 5.0):
            me = make_tech("me", ["plumbing"], rating=rating)
            ranked = rank_technicians([rival, me], ["plumbing"], Urgency.MEDIUM)
            positions.append([t.id for t, _ in ranked].index("me"))
        assert positions == sorted(positions, reverse=True)
        assert positions[0] == 1 and positions[-1] == 0

    def test_tie_broken_by_response_time(self):
        slow = make_tech("tech-a", ["plumbing"], rating=4.0, response_time_minutes=30)
        fast = make_tech("tech-b", ["plumbing"], rating=3.0, response_time_minutes=18)
        ranked = rank_technicians([slow, fast], ["plumbing"], Urgency.MEDIUM)
        assert ranked[0][1] == ranked[1][1]
        assert ranked[0][0].id == "tech-b"

    def test_tie_broken_by_id(self):
        techs = [make_tech("tech-z", ["plumbing"]), make_tech("tech-m", ["plumbing"])]
        assert select_best_technician(techs, ["plumbing"], Urgency.LOW).id == "tech-m"

    def test_empty_pool(self):
        assert rank_technicians([], ["plumbing"], Urgency.LOW) == []
        assert select_best_technician([], ["plumbing"], Urgency.LOW) is None
        assert compute_scores([], ["plumbing"], Urgency.MEDIUM).shape == (0,)


class TestDispatch:
    @pytest.mark.asyncio
    async def test_assigns_best_and_notifies(self, empty_svc):
        svc = empty_svc
        svc.registry.register(make_tech("tech-good", ["plumbing"], rating=4.9, response_time_minutes=15))
        svc.registry.register(make_tech("tech-ok", ["plumbing"], rating=3.5))
        ticket = make_ticket(svc, SINK)

        before = utcnow()
        result = await svc.dispatcher.dispatch(ticket)
        assert result.success is True
        assert result.technician.id == "tech-good"
        assert result.technician.available is False
        assert abs((result.eta - (before + timedelta(minutes=15))).total_seconds()) < 5

        stored = svc.tickets.get(ticket.id)
        assert stored.status == TicketStatus.DISPATCHED
        assert stored.assigned_technician_id == "tech-good"
        assert svc.registry.get("tech-good").available is False
        assert svc.registry.get("tech-ok").available is True

        records = svc.notifications.for_ticket(ticket.id)
        assert [r.recipient for r in records] == ["+1555tech-good", ticket.tenant_phone]
        assert all(r.status == DeliveryStatus.SENT for r in records)
        assert "Reply YES to accept or NO to decline" in records[0].message
        assert "Location: 123 Main St Unit 101" in records[0].message
        assert ticket.reference in records[1].message

    @pytest.mark.asyncio
    async def test_registry_reads_stay_off_the_event_loop(self, svc):
        loop_thread = threading.get_ident()
        reader_threads = []
        real_get = svc.registry.get

        def tracking_get(technician_id):
            reader_threads.append(threading.get_ident())
            return real_get(technician_id)

        svc.registry.get = tracking_get
        result = await svc.dispatcher.dispatch(make_ticket(svc, SINK))
        assert result.success is True
        assert reader_threads
        assert loop_thread not in reader_threads

    @pytest.mark.asyncio
    async def test_never_assigns_unavailable(self, empty_svc):
        svc = empty_svc
        svc.registry.register(make_tech("tech-star", ["plumbing"], rating=5.0, available=False))
        svc.registry.register(make_tech("tech-free", ["plumbing"], rating=2.0))
        result = await svc.dispatcher.dispatch(make_ticket(svc, SINK))
        assert result.technician.id == "tech-free"

    @pytest.mark.asyncio
    async def test_no_skill_match_non_emergency(self, empty_svc):
        svc = empty_svc
        svc.registry.register(make_tech("tech-e", ["electrical"]))
        ticket = make_ticket(svc, SINK)
        result = await svc.dispatcher.dispatch(ticket)
        assert result.success is False
        assert "plumbing" in result.message
        assert svc.tickets.get(ticket.id).status == TicketStatus.CREATED
        assert svc.registry.get("tech-e").available is True
        assert any(e["type"] == "dispatch_failed" for e in activity.get_recent())

    @pytest.mark.asyncio
    async def test_emergency_falls_back_to_fastest(self, empty_svc):
        svc = empty_svc
        svc.registry.register(make_tech("tech-h", ["hvac"], response_time_minutes=40, rating=5.0))
        svc.registry.register(make_tech("tech-e", ["electrical"], response_time_minutes=15, rating=3.0))
        result = await svc.dispatcher.dispatch(make_ticket(svc, FLOOD))
        assert result.success is True
        assert result.technician.id == "tech-e"

    @pytest.mark.asyncio
    async def test_emergency_nobody_available(self, empty_svc):
        svc = empty_svc
        svc.registry.register(make_tech("tech-busy", ["plumbing"], available=False))
        result = await svc.dispatcher.dispatch(make_ticket(svc, FLOOD))
        assert result.success is False
        assert result.message == "No technicians available for emergency dispatch"

    @pytest.mark.asyncio
    async def test_failed_delivery_does_not_fail_dispatch(self, empty_svc):
        svc = empty_svc

        class DownSender:
            async def send(self, recipient, message):
                raise ConnectionError("gateway unreachable")

        engine = DispatchEngine(svc.registry, svc.tickets, svc.calls, svc.notifications, DownSender(), svc.properties)
        svc.registry.register(make_tech("tech-1", ["plumbing"]))
        ticket = make_ticket(svc, SINK)
        result = await engine.dispatch(ticket)
        assert result.success is True
        records = svc.notifications.for_ticket(ticket.id)
        assert len(records) == 2
        assert all(r.status == DeliveryStatus.FAILED for r in records)
        assert svc.notifications.failed_count(ticket.id) == 2

    @pytest.mark.asyncio
    async def test_unknown_ticket(self, svc):
        with pytest.raises(NotFoundError):
            await svc.dispatcher.dispatch(Ticket.model_construct(id="ticket-missing"))

    @pytest.mark.asyncio
    async def test_only_created_tickets_dispatch(self, svc):
        ticket = make_ticket(svc, SINK)
        assert (await svc.dispatcher.dispatch(ticket)).success is True
        with pytest.raises(InvalidTransition):
            await svc.dispatcher.dispatch(ticket)

    def test_eta(self):
        now = utcnow()
        assert eta_for(make_tech("t", ["x"], response_time_minutes=45), now) == now + timedelta(minutes=45)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_single_technician_two_concurrent_dispatches(self, empty_svc):
        svc = empty_svc
        svc.registry.register(make_tech("tech-only", ["plumbing"]))
        first, second = make_ticket(svc, SINK), make_ticket(svc, SINK)
        results = await asyncio.gather(svc.dispatcher.dispatch(first), svc.dispatcher.dispatch(second))
        assert sorted(r.success for r in results) == [False, True]
        assigned = [t.assigned_technician_id for t in svc.tickets.list_all() if t.assigned_technician_id]
        assert assigned == ["tech-only"]

    @pytest.mark.asyncio
    async def test_loser_moves_to_next_candidate(self, empty_svc):
        svc = empty_svc
        svc.registry.register(make_tech("tech-a", ["plumbing"], rating=5.0))
        svc.registry.register(make_tech("tech-b", ["plumbing"], rating=3.0))
        tickets = [make_ticket(svc, SINK), make_ticket(svc, SINK)]
        results = await asyncio.gather(*(svc.dispatcher.dispatch(t) for t in tickets))
        assert all(r.success for r in results)
        assert {r.technician.id for r in results} == {"tech-a", "tech-b"}

    def test_threads_race_for_one_technician(self, empty_svc):
        svc = empty_svc
        svc.registry.register(make_tech("tech-only", ["plumbing"]))
        tickets = [make_ticket(svc, SINK) for _ in range(8)]

        def run(ticket):
            return asyncio.run(svc.dispatcher.dispatch(ticket))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(run, tickets))
        assert sum(r.success for r in results) == 1
        assert len(svc.tickets.list_all(status=TicketStatus.DISPATCHED)) == 1


class TestBatchAndLifecycle:
    @pytest.mark.asyncio
    async def test_batch_keeps_order_and_reports_unknown(self, svc):
        flood = make_ticket(svc, FLOOD)
        heat = make_ticket(svc, "There is no heat in the bedroom")
        results = await svc.dispatcher.dispatch_batch([flood, Ticket.model_construct(id="ticket-nope"), heat])
        assert [r.ticket_id for r in results] == [flood.id, "ticket-nope", heat.id]
        assert results[0].success and results[2].success
        assert results[1].success is False
        assert "not found" in results[1].message

    @pytest.mark.asyncio
    async def test_complete_releases_technician(self, svc):
        ticket = make_ticket(svc, SINK)
        result = await svc.dispatcher.dispatch(ticket)
        tech_id = result.technician.id
        await svc.dispatcher.start_work(ticket.id)
        done = await svc.dispatcher.complete(ticket.id)
        assert done.status == TicketStatus.COMPLETED
        tech = svc.registry.get(tech_id)
        assert tech.available is True
        assert tech.active_jobs == 0

    @pytest.mark.asyncio
    async def test_cancel_releases_technician(self, svc):
        ticket = make_ticket(svc, SINK)
        result = await svc.dispatcher.dispatch(ticket)
        cancelled = await svc.dispatcher.cancel(ticket.id)
        assert cancelled.status == TicketStatus.CANCELLED
        assert svc.registry.get(result.technician.id).available is True
        with pytest.raises(InvalidTransition):
            await svc.dispatcher.complete(ticket.id)
