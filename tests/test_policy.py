"""Tests for swarm_watchdog.policy."""

import pytest

from conftest import FakeLedger, FakeOracle, snapshot
from swarm_watchdog.models import (
    ENABLE_BETTING,
    Action,
    GameStatus,
    PauseState,
    RestartParam,
    StatusSnapshot,
    SupervisorMemory,
    TickMode,
)
from swarm_watchdog.policy import compute_restart_param, decide, decide_health

ACTIVE = PauseState.ACTIVE
PAUSED = PauseState.PAUSED


def _game_tick(memory, status, ledger=None, alive=True, pause_state=ACTIVE):
    return decide(memory, alive, status, pause_state, TickMode.GAME_CHANGE, ledger or FakeLedger())


# =============================================================================
# Health ticks
# =============================================================================


class TestHealth:
    def test_running(self):
        decision = decide_health(True, ACTIVE)
        assert decision.action is Action.NONE

    def test_not_running_restarts(self):
        decision = decide_health(False, ACTIVE)
        assert decision.action is Action.RESTART
        assert decision.restart_param is None

    def test_paused_never_restarts(self):
        assert decide_health(False, PAUSED).action is Action.STAY_PAUSED

    def test_health_tick_keeps_memory(self):
        memory = SupervisorMemory("7", "3")
        decision, new_memory = decide(memory, True, snapshot("8", "1"), ACTIVE, TickMode.HEALTH, FakeLedger())
        assert decision.action is Action.NONE
        assert new_memory is memory

    @pytest.mark.parametrize("mode", [TickMode.HEALTH, TickMode.GAME_CHANGE])
    @pytest.mark.parametrize(
        "memory,status",
        [
            (SupervisorMemory(), StatusSnapshot.unknown()),
            (SupervisorMemory(), snapshot("7", "3")),
            (SupervisorMemory("7", "3"), snapshot("7", "3")),
            (SupervisorMemory("7", "3"), snapshot("7", "4")),
            (SupervisorMemory("7", "3"), snapshot("8", "1", GameStatus.INACTIVE)),
        ],
    )
    def test_dead_worker_always_restarts(self, mode, memory, status):
        decision, _ = decide(memory, False, status, ACTIVE, mode, FakeLedger(("7", "4")))
        assert decision.action is Action.RESTART


# =============================================================================
# Game-change ticks
# =============================================================================


class TestGameChange:
    def test_scenario_a_first_observation(self):
        decision, memory = _game_tick(SupervisorMemory(), snapshot("7", "3"))
        assert decision.action is Action.NONE
        assert memory.position == ("7", "3")

    def test_scenario_b_new_round_rebets(self):
        decision, memory = _game_tick(SupervisorMemory("7", "3"), snapshot("7", "4"))
        assert decision.action is Action.RESTART_AND_REBET
        assert decision.restart_param == ENABLE_BETTING
        assert memory.position == ("7", "4")

    def test_scenario_c_already_bet(self):
        decision, memory = _game_tick(
            SupervisorMemory("7", "3"), snapshot("7", "4"), ledger=FakeLedger(("7", "4"))
        )
        assert decision.action is Action.NONE
        assert memory.position == ("7", "4")

    def test_new_game(self):
        decision, memory = _game_tick(SupervisorMemory("7", "4"), snapshot("8", "1"))
        assert decision.action is Action.RESTART_AND_REBET
        assert memory.position == ("8", "1")

    def test_unchanged(self):
        memory = SupervisorMemory("7", "3")
        decision, new_memory = _game_tick(memory, snapshot("7", "3"))
        assert decision.action is Action.NONE
        assert new_memory == memory

    def test_changed_but_inactive(self):
        decision, memory = _game_tick(SupervisorMemory("7", "3"), snapshot("7", "4", GameStatus.INACTIVE))
        assert decision.action is Action.NONE
        assert memory.position == ("7", "4")

    @pytest.mark.parametrize(
        "memory",
        [SupervisorMemory(), SupervisorMemory("7", "3"), SupervisorMemory("7", "3", paused_by_operator=True)],
    )
    def test_unknown_status_leaves_memory(self, memory):
        decision, new_memory = _game_tick(memory, StatusSnapshot.unknown())
        assert decision.action is Action.NONE
        assert new_memory == memory

    def test_half_populated_status_is_unknown(self):
        memory = SupervisorMemory("7", "3")
        decision, new_memory = _game_tick(memory, StatusSnapshot("7", None, GameStatus.ACTIVE))
        assert decision.action is Action.NONE
        assert new_memory == memory

    def test_paused_tracks_but_does_not_rebet(self):
        decision, memory = _game_tick(SupervisorMemory("7", "3"), snapshot("7", "4"), pause_state=PAUSED)
        assert decision.action is Action.STAY_PAUSED
        assert memory.position == ("7", "4")

    def test_dead_and_paused_stays_paused(self):
        decision, _ = _game_tick(SupervisorMemory("7", "3"), snapshot("7", "4"), alive=False, pause_state=PAUSED)
        assert decision.action is Action.STAY_PAUSED

    def test_dead_worker_still_tracks_position(self):
        decision, memory = _game_tick(SupervisorMemory("7", "3"), snapshot("7", "4"), alive=False)
        assert decision.action is Action.RESTART
        assert memory.position == ("7", "4")

    def test_input_memory_not_mutated(self):
        memory = SupervisorMemory("7", "3")
        _game_tick(memory, snapshot("7", "4"))
        assert memory.position == ("7", "3")


# =============================================================================
# Restart parameter
# =============================================================================


class TestComputeRestartParam:
    def test_no_bet_enables(self):
        assert compute_restart_param(FakeOracle(snapshot("7", "4")), FakeLedger()) is RestartParam.ENABLE

    def test_bet_present_disables(self):
        ledger = FakeLedger(("7", "4"))
        assert compute_restart_param(FakeOracle(snapshot("7", "4")), ledger) is RestartParam.DISABLE

    def test_inactive_disables(self):
        oracle = FakeOracle(snapshot("7", "4", GameStatus.INACTIVE))
        assert compute_restart_param(oracle, FakeLedger()) is RestartParam.DISABLE

    def test_unknown_enables(self):
        assert compute_restart_param(FakeOracle(), FakeLedger()) is RestartParam.ENABLE

    def test_half_populated_status_enables(self):
        oracle = FakeOracle(StatusSnapshot(None, "4", GameStatus.ACTIVE))
        assert compute_restart_param(oracle, FakeLedger(("7", "4"))) is RestartParam.ENABLE

    def test_recomputed_after_decision(self):
        """A bet landing between decision and restart flips the param."""
        ledger = FakeLedger()
        oracle = FakeOracle(snapshot("7", "4"))
        decision, _ = _game_tick(SupervisorMemory("7", "3"), oracle.fetch_status(), ledger=ledger)
        assert decision.action is Action.RESTART_AND_REBET

        assert compute_restart_param(oracle, ledger) is RestartParam.ENABLE
        ledger.bets.add(("7", "4"))
        assert compute_restart_param(oracle, ledger) is RestartParam.DISABLE
