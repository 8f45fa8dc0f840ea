from __future__ import annotations

import argparse
import concurrent.futures as cf
import contextlib
import json
import os
import signal
import sys
import threading
from collections import Counter
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from container import CONTAINER_ROOT, SCRATCH_MOUNT, SOLUTION_MOUNT, ContainerSession
from harness_errors import InvalidMapError, SetupError, UndeterminedOutcome
from map_mutator import dimensions, read_map
from match_runner import DEFAULT_TIMEOUT, TIMEOUT, MatchResult, MatchSpec, play_match
from outcome import WIN, decide
from start_positions import generate

DEFAULT_OPPONENTS = ["bender", "h2_d2", "wall_e", "terminator"]
DEFAULT_MAPS = ["map00", "map01", "map02"]

STATUSES = ("WIN", "LOSS", "TIMEOUT", "ERROR")

PlayFn = Callable[[MatchSpec, Sequence[str]], MatchResult]


@dataclass
class TesterConfig:
    engine: str = "./linux_game_engine"
    player: str = "solution/target/release/filler"
    robots_dir: str = "linux_robots"
    opponents: List[str] = field(default_factory=lambda: list(DEFAULT_OPPONENTS))
    maps_dir: str = "maps"
    maps: List[str] = field(default_factory=lambda: list(DEFAULT_MAPS))
    repetitions: int = 5
    timeout: float = DEFAULT_TIMEOUT
    workers: int = 1
    scratch_dir: Optional[str] = None  # defaults to maps_dir
    workdir: Optional[str] = None
    container: Optional[str] = None
    solution_dir: str = "solution"

    def to_dict(self) -> Dict:
        return asdict(self)

    @staticmethod
    def from_dict(d: Dict) -> "TesterConfig":
        known = {f.name for f in fields(TesterConfig)}
        unknown = sorted(set(d) - known)
        if unknown:
            raise SetupError(f"unknown config keys: {', '.join(unknown)}")
        for key, value in d.items():
            expected = _FIELD_TYPES[key]
            if value is None and key in _OPTIONAL_FIELDS:
                continue
            ok = isinstance(value, expected) and not isinstance(value, bool)
            if ok and expected is list:
                ok = all(isinstance(v, str) for v in value)
            if not ok:
                raise SetupError(f"config key {key!r} has the wrong type: {value!r}")
        return TesterConfig(**d)


_FIELD_TYPES = {
    "engine": str,
    "player": str,
    "robots_dir": str,
    "opponents": list,
    "maps_dir": str,
    "maps": list,
    "repetitions": int,
    "timeout": (int, float),
    "workers": int,
    "scratch_dir": str,
    "workdir": str,
    "container": str,
    "solution_dir": str,
}
_OPTIONAL_FIELDS = {"scratch_dir", "workdir", "container"}


@dataclass
class Roster:
    engine: str
    player: str
    opponents: List[Tuple[str, str]]
    maps: Dict[str, List[str]]


@dataclass
class Verdict:
    status: str  # WIN / LOSS / TIMEOUT / ERROR
    detail: str = ""
    undetermined: bool = False
    output: str = ""


class Tally:
    """Win counts per (opponent, map), plus how every other match ended."""

    def __init__(self, specs: Sequence[MatchSpec], repetitions: int):
        self.repetitions = repetitions
        self.opponents: List[str] = []
        self.maps: List[str] = []
        self.scheduled: Counter = Counter()
        for s in specs:
            if s.opponent not in self.opponents:
                self.opponents.append(s.opponent)
            if s.map_name not in self.maps:
                self.maps.append(s.map_name)
            self.scheduled[(s.opponent, s.map_name)] += 1
        self.counts: Dict[Tuple[str, str], Counter] = {k: Counter() for k in self.scheduled}
        self.records: List[Dict] = []

    def record(self, spec: MatchSpec, verdict: Verdict) -> None:
        key = (spec.opponent, spec.map_name)
        self.counts[key][verdict.status] += 1
        if verdict.undetermined:
            self.counts[key]["undetermined"] += 1
        self.records.append(
            {
                "opponent": spec.opponent,
                "map": spec.map_name,
                "rep": spec.rep,
                "p1": list(spec.pos_a),
                "p2": list(spec.pos_b),
                "status": verdict.status,
                "undetermined": verdict.undetermined,
                "detail": verdict.detail,
                "output": verdict.output,
            }
        )

    def wins(self, opponent: str, map_name: str) -> int:
        return self.counts.get((opponent, map_name), Counter())["WIN"]

    def played(self, opponent: str, map_name: str) -> int:
        c = self.counts.get((opponent, map_name), Counter())
        return sum(c[s] for s in STATUSES)

    def pair_done(self, opponent: str, map_name: str) -> bool:
        return self.played(opponent, map_name) == self.scheduled[(opponent, map_name)]

    def total(self, status: str, opponent: Optional[str] = None) -> int:
        return sum(c[status] for (o, _), c in self.counts.items() if opponent is None or o == opponent)

    def to_dict(self) -> Dict:
        pairs = []
        for (o, m), c in self.counts.items():
            pairs.append(
                {
                    "opponent": o,
                    "map": m,
                    "wins": c["WIN"],
                    "scheduled": self.scheduled[(o, m)],
                    "losses": c["LOSS"],
                    "timeouts": c["TIMEOUT"],
                    "errors": c["ERROR"],
                    "undetermined": c["undetermined"],
                }
            )
        return {
            "repetitions": self.repetitions,
            "wins": self.total("WIN"),
            "scheduled": sum(self.scheduled.values()),
            "pairs": pairs,
            "matches": self.records,
        }


def _notes(c: Counter, skipped: int = 0) -> str:
    parts = []
    for key, label in (("TIMEOUT", "timeout"), ("ERROR", "error")):
        if c[key]:
            parts.append(f"{c[key]} {label}" + ("s" if c[key] > 1 else ""))
    if c["undetermined"]:
        parts.append(f"{c['undetermined']} undetermined")
    if skipped:
        parts.append(f"{skipped} skipped")
    return f" ({', '.join(parts)})" if parts else ""


def render_summary(tally: Tally) -> List[str]:
    bar = "=" * 42
    lines = [bar, "           FINAL TALLY", bar, ""]
    for opp in tally.opponents:
        lines.append(f"vs {opp.upper()}:")
        opp_wins = opp_sched = 0
        for m in tally.maps:
            key = (opp, m)
            if key not in tally.counts:
                continue
            w, n = tally.wins(opp, m), tally.scheduled[key]
            opp_wins += w
            opp_sched += n
            lines.append(f"  {m} - {w}/{n} wins{_notes(tally.counts[key], n - tally.played(opp, m))}")
        lines.append(f"  TOTAL - {opp_wins}/{opp_sched} wins")
        lines.append("")
    grand = Counter()
    for c in tally.counts.values():
        grand.update(c)
    skipped = sum(tally.scheduled.values()) - sum(grand[s] for s in STATUSES)
    lines.append(f"GRAND TOTAL - {grand['WIN']}/{sum(tally.scheduled.values())} wins{_notes(grand, skipped)}")
    lines.append(bar)
    return lines


def _program_path(base: Path, name: str, check: bool, what: str) -> str:
    path = Path(name)
    if not path.is_absolute():
        path = base / path
    if check and not (path.is_file() and os.access(path, os.X_OK)):
        raise SetupError(f"{what} not found or not executable: {path}")
    return str(path.resolve()) if check else name


def load_roster(cfg: TesterConfig, check_programs: bool = True) -> Roster:
    """Resolve and validate everything a run needs before any match starts.

    With ``check_programs`` off (container mode) program paths are passed
    through untouched; they only exist inside the container.
    """
    if not cfg.opponents:
        raise SetupError("opponent roster is empty")
    if not cfg.maps:
        raise SetupError("map roster is empty")
    if cfg.repetitions < 1:
        raise SetupError("repetitions must be >= 1")
    if cfg.timeout <= 0:
        raise SetupError("timeout must be positive")
    if cfg.workers < 1:
        raise SetupError("workers must be >= 1")

    base = Path(cfg.workdir) if cfg.workdir else Path.cwd()
    engine = _program_path(base, cfg.engine, check_programs, "engine")
    player = _program_path(base, cfg.player, check_programs, "player program")

    opponents: List[Tuple[str, str]] = []
    for entry in cfg.opponents:
        # bare names live in robots_dir; anything with a slash is a path
        rel = entry if "/" in entry else f"{cfg.robots_dir}/{entry}"
        path = _program_path(base, rel, check_programs, f"opponent {entry!r}")
        opponents.append((Path(entry).name, path))

    maps: Dict[str, List[str]] = {}
    for name in cfg.maps:
        path = Path(cfg.maps_dir) / name
        if not path.is_file():
            raise SetupError(f"map not found: {path}")
        try:
            maps[name] = read_map(path)
        except (InvalidMapError, OSError, UnicodeDecodeError) as e:
            raise SetupError(f"cannot read map {path}: {e}") from e
    return Roster(engine=engine, player=player, opponents=opponents, maps=maps)


def schedule(roster: Roster, repetitions: int) -> List[MatchSpec]:
    specs: List[MatchSpec] = []
    for opp, opp_path in roster.opponents:
        for map_name, lines in roster.maps.items():
            rows, cols = dimensions(lines)
            for rep in range(1, repetitions + 1):
                pos_a, pos_b = generate(map_name, rep, rows, cols)
                specs.append(MatchSpec(opp, opp_path, map_name, rep, pos_a, pos_b))
    return specs


def select(specs: Sequence[MatchSpec], only: Sequence[str]) -> List[MatchSpec]:
    """Keep specs matching any ``OPPONENT[:MAP[:REP]]`` filter."""
    if not only:
        return list(specs)
    filters = []
    for item in only:
        parts = item.split(":")
        if len(parts) > 3 or not parts[0]:
            raise SetupError(f"bad --only filter: {item!r}")
        try:
            rep = int(parts[2]) if len(parts) == 3 else None
        except ValueError:
            raise SetupError(f"bad repetition in --only filter: {item!r}") from None
        filters.append((parts[0], parts[1] if len(parts) > 1 and parts[1] else None, rep))
    kept = [
        s
        for s in specs
        if any(o == s.opponent and m in (None, s.map_name) and r in (None, s.rep) for o, m, r in filters)
    ]
    if not kept:
        raise SetupError("--only matched no scheduled matches")
    return kept


def run_one(spec: MatchSpec, map_lines: Sequence[str], play: PlayFn) -> Verdict:
    """Play one match and fold every per-match failure into a status."""
    try:
        result = play(spec, map_lines)
    except InvalidMapError as e:
        return Verdict("ERROR", f"invalid map: {e}")
    except Exception as e:
        return Verdict("ERROR", f"{type(e).__name__}: {e}")
    failure = result.failure()
    if failure is not None:
        status = "TIMEOUT" if result.outcome == TIMEOUT else "ERROR"
        return Verdict(status, str(failure), output=result.output)
    try:
        outcome = decide(result.output)
    except UndeterminedOutcome as e:
        return Verdict("LOSS", str(e), undetermined=True, output=result.output)
    return Verdict("WIN" if outcome == WIN else "LOSS", output=result.output)


def _report(tally: Tally, spec: MatchSpec, verdict: Verdict, done: int, total: int) -> None:
    tally.record(spec, verdict)
    status = verdict.status
    note = f" ({verdict.detail})" if verdict.detail else ""
    print(
        f"[test] [{done}/{total}] Our bot (P1) vs {spec.opponent} (P2) on {spec.map_name} "
        f"(game {spec.rep}/{tally.repetitions})... {status}{note}",
        flush=True,
    )
    if tally.pair_done(spec.opponent, spec.map_name):
        w = tally.wins(spec.opponent, spec.map_name)
        n = tally.scheduled[(spec.opponent, spec.map_name)]
        print(f"[test] vs {spec.opponent} on {spec.map_name}: Wins: {w}/{n}", flush=True)


def _cancelled(cancel: Optional[threading.Event]) -> bool:
    return cancel is not None and cancel.is_set()


def run_matrix(
    specs: Sequence[MatchSpec],
    maps: Dict[str, List[str]],
    play: PlayFn,
    repetitions: int,
    workers: int = 1,
    cancel: Optional[threading.Event] = None,
) -> Tally:
    tally = Tally(specs, repetitions)
    total = len(specs)
    done = 0

    if workers > 1:
        # Bounded in-flight set so cancellation stops new submissions quickly.
        queue = iter(specs)
        with cf.ThreadPoolExecutor(max_workers=workers) as ex:
            inflight: Dict[cf.Future, MatchSpec] = {}

            def fill():
                while len(inflight) < workers and not _cancelled(cancel):
                    spec = next(queue, None)
                    if spec is None:
                        return
                    inflight[ex.submit(run_one, spec, maps[spec.map_name], play)] = spec

            fill()
            while inflight:
                finished, _ = cf.wait(inflight, return_when=cf.FIRST_COMPLETED)
                for fut in finished:
                    spec = inflight.pop(fut)
                    done += 1
                    _report(tally, spec, fut.result(), done, total)
                fill()
    else:
        for spec in specs:
            if _cancelled(cancel):
                break
            verdict = run_one(spec, maps[spec.map_name], play)
            done += 1
            _report(tally, spec, verdict, done, total)

    if done < total:
        print(f"[test] Cancelled: {total - done} match(es) not run", flush=True)
    return tally


def make_play(
    roster: Roster,
    cfg: TesterConfig,
    scratch: Path,
    prefix: Sequence[str] = (),
    engine_dir: Optional[str] = None,
    cwd: Optional[Path] = None,
    inner_timeout: Optional[float] = None,
) -> PlayFn:
    def play(spec: MatchSpec, map_lines: Sequence[str]) -> MatchResult:
        return play_match(
            roster.engine,
            map_lines,
            spec,
            roster.player,
            scratch,
            timeout=cfg.timeout,
            prefix=prefix,
            cwd=cwd,
            engine_dir=engine_dir,
            inner_timeout=inner_timeout,
        )

    return play


@contextlib.contextmanager
def cancel_on_signals(cancel: threading.Event) -> Iterator[threading.Event]:
    """Set ``cancel`` on SIGINT/SIGTERM for the duration of the block."""
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def handler(signum, frame):
        print(f"\n[test] Caught signal {signum}; finishing in-flight matches", flush=True)
        cancel.set()

    previous = {s: signal.signal(s, handler) for s in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield cancel
    finally:
        for s, h in previous.items():
            signal.signal(s, h)


def run(
    cfg: TesterConfig,
    only: Sequence[str] = (),
    json_path: Optional[Path] = None,
    cancel: Optional[threading.Event] = None,
) -> int:
    cancel = cancel or threading.Event()
    scratch = Path(cfg.scratch_dir or cfg.maps_dir).resolve()
    roster = load_roster(cfg, check_programs=cfg.container is None)
    specs = select(schedule(roster, cfg.repetitions), only)

    print(
        f"[test] Plan: opponents={len(roster.opponents)} x maps={len(roster.maps)} x reps={cfg.repetitions}"
        f" => total_games={len(specs)} (timeout={cfg.timeout:g}s, workers={cfg.workers})",
        flush=True,
    )

    with cancel_on_signals(cancel):
        if cfg.container:
            mounts = {Path(cfg.solution_dir): SOLUTION_MOUNT, scratch: SCRATCH_MOUNT}
            with ContainerSession(cfg.container, mounts, workdir=cfg.workdir or CONTAINER_ROOT) as session:
                session.require_executables([roster.engine, roster.player] + [p for _, p in roster.opponents])
                play = make_play(
                    roster,
                    cfg,
                    scratch,
                    prefix=session.exec_prefix(),
                    engine_dir=SCRATCH_MOUNT,
                    inner_timeout=cfg.timeout,
                )
                tally = run_matrix(specs, roster.maps, play, cfg.repetitions, cfg.workers, cancel)
        else:
            cwd = Path(cfg.workdir) if cfg.workdir else None
            play = make_play(roster, cfg, scratch, cwd=cwd)
            tally = run_matrix(specs, roster.maps, play, cfg.repetitions, cfg.workers, cancel)

    print("", flush=True)
    print("\n".join(render_summary(tally)), flush=True)
    if json_path is not None:
        data = {"config": cfg.to_dict(), **tally.to_dict()}
        json_path.write_text(json.dumps(data, indent=2))
        print(f"[test] Wrote {json_path}", flush=True)
    return 130 if cancel.is_set() else 0


def load_config(path: Path) -> TesterConfig:
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError) as e:
        raise SetupError(f"cannot read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise SetupError(f"config {path} must be a JSON object")
    return TesterConfig.from_dict(data)


def build_config(args: argparse.Namespace) -> TesterConfig:
    cfg = load_config(args.config) if args.config else TesterConfig()
    for f in fields(TesterConfig):
        value = getattr(args, f.name, None)
        if value is not None:
            setattr(cfg, f.name, value)
    return cfg


def main(argv: Optional[List[str]] = None) -> int:
    d = TesterConfig()
    ap = argparse.ArgumentParser(description="Test our Filler bot against the opponent roster on every map")
    ap.add_argument("--config", type=Path, default=None, help="JSON file with default settings (flags override it)")
    ap.add_argument("--engine", default=None, help=f"Game engine executable (default: {d.engine})")
    ap.add_argument("--player", default=None, help=f"Our bot, always P1 (default: {d.player})")
    ap.add_argument("--robots-dir", default=None, help=f"Directory of opponent bots (default: {d.robots_dir})")
    ap.add_argument("--opponents", nargs="+", default=None, help=f"Opponent roster (default: {' '.join(d.opponents)})")
    ap.add_argument("--maps-dir", default=None, help=f"Directory of base maps (default: {d.maps_dir})")
    ap.add_argument("--maps", nargs="+", default=None, help=f"Map roster (default: {' '.join(d.maps)})")
    ap.add_argument("--repetitions", type=int, default=None, help=f"Games per opponent/map pair (default: {d.repetitions})")
    ap.add_argument("--timeout", type=float, default=None, help=f"Per-game timeout in seconds (default: {d.timeout:g})")
    ap.add_argument("--workers", type=int, default=None, help="Games to run in parallel (default: 1)")
    ap.add_argument("--scratch-dir", default=None, help="Where modified maps are written (default: maps dir)")
    ap.add_argument("--workdir", default=None, help="Directory the engine runs in; program paths are relative to it")
    ap.add_argument("--container", default=None, help="Run games inside a container started from this image")
    ap.add_argument("--solution-dir", default=None, help=f"Host solution dir mounted in the container (default: {d.solution_dir})")
    ap.add_argument("--only", nargs="+", default=(), metavar="OPP[:MAP[:REP]]", help="Run only matching matches")
    ap.add_argument("--json", type=Path, default=None, help="Write the tally and per-game results as JSON")
    args = ap.parse_args(argv)

    try:
        cfg = build_config(args)
        return run(cfg, only=args.only, json_path=args.json)
    except SetupError as e:
        print(f"[setup] Error: {e}", file=sys.stderr, flush=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
