"""Middlegame chapters: annotated master games and training positions.

Each chapter pairs one annotated master game with a handful of training
positions. The game is studied move by move through a ReplayController,
so it never touches the live board; annotations are keyed by full-move
number and matched against the SAN actually played. Training positions
are either multiple choice or "find the move", checked with the same
notation parser the live game uses.
"""

from __future__ import annotations

import io
import logging
from dataclasses import asdict, dataclass

import chess
import chess.pgn

from trainer.game import coordinate_to_move, parse_notation
from trainer.models import GameResult, RecordedGame
from trainer.replay import ReplayController, replay_view

logger = logging.getLogger(__name__)

MULTIPLE_CHOICE = "multiple-choice"
FIND_MOVE = "find-move"

_RESULTS = {
    "1-0": GameResult("resignation", "w"),
    "0-1": GameResult("resignation", "b"),
    "1/2-1/2": GameResult("draw"),
}


@dataclass(frozen=True)
class MoveAnnotation:
    move_number: int
    move: str
    concept: str
    explanation: str


@dataclass(frozen=True)
class AnnotatedGame:
    id: str
    title: str
    players: str
    result: str
    pgn: str
    annotations: tuple[MoveAnnotation, ...]
    key_takeaways: tuple[str, ...]

    def annotations_by_move(self) -> dict[int, tuple[MoveAnnotation, ...]]:
        by_move: dict[int, tuple[MoveAnnotation, ...]] = {}
        for annotation in self.annotations:
            by_move[annotation.move_number] = by_move.get(annotation.move_number, ()) + (annotation,)
        return by_move


@dataclass(frozen=True)
class ChoiceOption:
    label: str
    is_correct: bool
    explanation: str


@dataclass(frozen=True)
class TrainingPosition:
    """A quiz position: pick the right plan or find the right move."""

    id: str
    fen: str
    question: str
    kind: str
    explanation: str
    options: tuple[ChoiceOption, ...] = ()
    correct_moves: tuple[str, ...] = ()
    hints: tuple[str, ...] = ()

    @property
    def side_to_move(self) -> str:
        return self.fen.split(" ")[1]


@dataclass(frozen=True)
class MiddlegameChapter:
    id: str
    title: str
    description: str
    theme: str
    master_game: AnnotatedGame
    positions: tuple[TrainingPosition, ...]
    estimated_minutes: int = 15


@dataclass(frozen=True)
class AnswerResult:
    """Outcome of one answer to a training position.

    ``answer`` is the chosen option label or the SAN of the move played;
    ``feedback`` is specific to that answer and ``explanation`` is the
    position's general lesson.
    """

    correct: bool
    answer: str
    feedback: str
    explanation: str


def _note(move_number: int, move: str, concept: str, explanation: str) -> MoveAnnotation:
    return MoveAnnotation(move_number, move, concept, explanation)


def _choice(label: str, explanation: str, correct: bool = False) -> ChoiceOption:
    return ChoiceOption(label, correct, explanation)


# ---------------------------------------------------------------------------
# Chapter data
# ---------------------------------------------------------------------------


_KINGSIDE_ATTACK = MiddlegameChapter(
    id="kingside_attack",
    title="Kingside Attack",
    description="Build the classic London attack against a castled king",
    theme="Attack",
    master_game=AnnotatedGame(
        id="game_kingside_attack_1",
        title="The London Kingside Attack",
        players="GM Example vs IM Opponent, 2023",
        result="1-0",
        pgn=(
            "1. d4 Nf6 2. Bf4 g6 3. e3 Bg7 4. Nf3 O-O 5. Be2 d6 6. O-O Nbd7 "
            "7. h3 Re8 8. Nbd2 e5 9. Bh2 exd4 10. exd4 Nf8 11. c3 Bf5 12. Re1 N6d7 "
            "13. Nf1 c6 14. Ng3 Bg4 15. Ne5 Nxe5 16. dxe5 Bxe2 17. Qxe2 Rxe5 "
            "18. Qd3 Rxe1+ 19. Rxe1 Qf6 20. Qd4 Qxd4 21. cxd4 1-0"
        ),
        annotations=(
            _note(8, "Nbd2", "The Flexible Knight",
                  "The standard London knight. It can reroute via f1 to g3 and "
                  "leaves the c-pawn free to advance."),
            _note(9, "Bh2", "Retreating with Purpose",
                  "The bishop steps back before ...e5 can hit it and keeps its "
                  "diagonal towards e5 and d6."),
            _note(15, "Ne5", "The e5 Outpost",
                  "No black pawn can chase the knight from e5. From there it "
                  "eyes f7 and works with the dark-squared bishop."),
            _note(16, "dxe5", "Opening the Center",
                  "Recapturing with the pawn opens the d-file and leaves a strong "
                  "pawn on e5 backed by the h2 bishop."),
            _note(20, "Qd4", "Centralizing the Queen",
                  "Once the centre opens the queen is at her best on d4, "
                  "covering the long diagonal."),
        ),
        key_takeaways=(
            "Ne5 is the key outpost in most London positions",
            "Bh2 keeps the dark-squared bishop safe and active",
            "Trade the pieces that challenge your strong squares, on your terms",
            "A centralized queen gives the most flexibility",
        ),
    ),
    positions=(
        TrainingPosition(
            id="pos_kingside_1",
            fen="r1bq1rk1/ppp2pbp/2np1np1/4p3/3PP3/2N1BN1P/PP2BPP1/R2QR1K1 w - - 0 1",
            question="Black has castled kingside. What is White's best plan?",
            kind=MULTIPLE_CHOICE,
            options=(
                _choice("A) Castle queenside and attack there",
                        "Too slow, and the black king is on the other wing."),
                _choice("B) Play Ne5, Qd2 and prepare h4-h5",
                        "Ne5 anchors the attack and Qd2 supports the pawn storm.", True),
                _choice("C) Trade all pieces for an endgame",
                        "Trading throws away the attacking chances."),
                _choice("D) Play c4 and focus on the center",
                        "c4 can come later; attack where the king is first."),
            ),
            explanation="Find the enemy king, then attack that side of the board.",
        ),
        TrainingPosition(
            id="pos_kingside_2",
            fen="r1bq1rk1/ppp2pbp/2np1np1/4N3/3PP3/2N1B2P/PP2BPP1/R2Q1RK1 w - - 0 1",
            question="You have achieved Ne5. What comes next?",
            kind=FIND_MOVE,
            correct_moves=("Qd2",),
            hints=(
                "The queen should support a kingside push",
                "Which squares can the queen reach from d1?",
                "Qd2 backs up h4-h5 and connects the rooks",
            ),
            explanation="Qd2 connects the rooks, supports h4-h5 and can later swing to h6.",
        ),
        TrainingPosition(
            id="pos_kingside_3",
            fen="r1bq1rk1/ppp2pbp/2np1np1/4N3/3PP2P/2N1B3/PP1QBPP1/R4RK1 w - - 0 1",
            question="Your pieces are ready. How does the pawn storm start?",
            kind=FIND_MOVE,
            correct_moves=("h5",),
            hints=(
                "Push on the kingside",
                "The h-pawn is already on h4",
                "h5 hits g6 and opens lines",
            ),
            explanation="h5 attacks g6. Any capture opens a file towards the black king.",
        ),
        TrainingPosition(
            id="pos_kingside_4",
            fen="r2q1rk1/ppp2pbp/2np1npP/4N3/3PP3/2N1B3/PP1QBPP1/R4RK1 w - - 0 1",
            question="Black has allowed h6. What is the best follow-up?",
            kind=MULTIPLE_CHOICE,
            options=(
                _choice("A) Take on g7 immediately",
                        "Too hasty. Improve the pieces first."),
                _choice("B) Bring a rook to the h-file",
                        "The h-file is about to open; put a rook on it.", True),
                _choice("C) Play Qh2 immediately",
                        "Premature without a rook on the h-file."),
                _choice("D) Retreat with Qd1",
                        "Retreating hands Black the initiative."),
            ),
            explanation="With space on the kingside, bring more pieces to the attack.",
        ),
        TrainingPosition(
            id="pos_kingside_5",
            fen="r2q1rk1/ppp2pbp/2np1np1/4N3/3PP3/2N2B2/PP1Q1PPP/R3R1K1 w - - 0 1",
            question="The dark-squared bishop is gone. Where does the queen land?",
            kind=FIND_MOVE,
            correct_moves=("Qh6",),
            hints=(
                "The dark squares around the black king are weak",
                "The queen has a clear diagonal from d2",
                "Combine the queen with the knight on e5",
            ),
            explanation="Qh6 sits next to the black king and threatens ideas with Ng4 or Nxf7.",
        ),
    ),
)

_VS_KID = MiddlegameChapter(
    id="vs_kid",
    title="vs King's Indian Defense",
    description="Control the center and expand on the queenside",
    theme="Central Control",
    master_game=AnnotatedGame(
        id="game_vs_kid_1",
        title="London vs King's Indian: Queenside Domination",
        players="Kamsky vs Radjabov, 2012",
        result="1-0",
        pgn=(
            "1. d4 Nf6 2. Bf4 g6 3. e3 Bg7 4. Nf3 O-O 5. Be2 d6 6. O-O Nbd7 "
            "7. h3 c5 8. c3 b6 9. Nbd2 Bb7 10. a4 a6 11. Re1 Qc7 12. Bf1 e5 "
            "13. dxe5 dxe5 14. Bg5 h6 15. Bh4 Rfe8 16. Nc4 Rad8 17. Qc2 Nh5 "
            "18. Rad1 Nf8 19. a5 bxa5 20. Nxa5 Bc8 21. Qb3 1-0"
        ),
        annotations=(
            _note(10, "a4", "Queenside Expansion",
                  "a4 grabs space and prepares a5 against the ...b6 structure."),
            _note(13, "dxe5", "Favorable Exchange",
                  "After ...e5 the exchange opens the d-file and leaves e5 as a target."),
            _note(14, "Bg5", "Pinning the Defender",
                  "With the centre open the bishop moves up to pin the f6 knight."),
            _note(16, "Nc4", "The Knight Maneuver",
                  "From c4 the knight eyes both a5 and e5."),
            _note(20, "Nxa5", "Breaking Through",
                  "The a5 break has torn open Black's queenside."),
        ),
        key_takeaways=(
            "Against the fianchetto, expand on the queenside with a4-a5",
            "Welcome the ...e5 exchange since it opens lines",
            "Nc4-a5 breaks open the queenside",
            "Bg5 becomes strong once the center opens",
        ),
    ),
    positions=(
        TrainingPosition(
            id="pos_kid_1",
            fen="r2q1rk1/pb1nppbp/1p1p1np1/2p5/3P1B2/2P1PN1P/PP1NBPP1/R2Q1RK1 w - - 2 10",
            question="Black has played ...b6 and ...Bb7. What is White's plan?",
            kind=MULTIPLE_CHOICE,
            options=(
                _choice("A) Play e4 for a central pawn mass",
                        "e4 loosens d4 and hands Black the d5 square."),
                _choice("B) Play a4 and expand on the queenside",
                        "a4 and a5 crack open the side where Black is weak.", True),
                _choice("C) Play h4 and attack the kingside",
                        "The fianchetto makes the kingside solid; go queenside."),
                _choice("D) Play dxc5 to simplify",
                        "Releasing the tension gives Black easy play."),
            ),
            explanation="The queenside is the weak spot. a4-a5 with Nc4 builds lasting pressure.",
        ),
        TrainingPosition(
            id="pos_kid_2",
            fen="r4rk1/1bqnppbp/pp1p1np1/2p5/P2P1B2/2P1PN1P/1P1NBPP1/R2QR1K1 w - - 2 12",
            question="Your a-pawn is on a4. How do you continue the queenside pressure?",
            kind=FIND_MOVE,
            correct_moves=("a5",),
            hints=(
                "Keep pushing on the queenside",
                "Challenge the pawn on b6",
                "a5 forces a decision about b6",
            ),
            explanation="a5 either opens the b-file or cramps Black's queenside for good.",
        ),
        TrainingPosition(
            id="pos_kid_3",
            fen="r3r1k1/1bqn1pb1/pp3npp/2p1p3/P6B/2P1PN1P/1P1N1PP1/R2QRBK1 w - - 0 16",
            question="The center has opened. What is the best knight maneuver?",
            kind=FIND_MOVE,
            correct_moves=("Nc4",),
            hints=(
                "One knight can reach a much better square",
                "Where does the d2 knight want to go?",
                "Nc4 eyes both a5 and e5",
            ),
            explanation="Nc4 supports the queenside plan and keeps an eye on e5.",
        ),
        TrainingPosition(
            id="pos_kid_4",
            fen="r4rk1/1bqn1pbp/pp3np1/2p1p3/P4B2/2P1PN1P/1P1N1PP1/R2QRBK1 w - - 0 14",
            question="Black just played ...e5. How should White respond?",
            kind=MULTIPLE_CHOICE,
            options=(
                _choice("A) Play dxe5 and open lines",
                        "The d-file opens and e5 becomes a target.", True),
                _choice("B) Play d5 and lock the center",
                        "A closed centre takes away your pieces' activity."),
                _choice("C) Ignore it and play on the queenside",
                        "Deal with the centre first, then return to the queenside."),
                _choice("D) Play Bxe5 immediately",
                        "The bishop is worth more than the pawn it would win."),
            ),
            explanation="Welcome the ...e5 break; the open d-file favors White.",
        ),
        TrainingPosition(
            id="pos_kid_5",
            fen="3rrnk1/1bq2pb1/pp4pp/2p1p2n/P1N4B/2P1PN1P/1PQ2PP1/3RRBK1 w - - 8 19",
            question="Black's queenside is weak. Find the breakthrough.",
            kind=FIND_MOVE,
            correct_moves=("a5",),
            hints=(
                "The a-pawn is ready",
                "Open the a- and b-files",
                "a5 attacks b6 directly",
            ),
            explanation="a5 breaks through; after ...bxa5 Nxa5 the knight dominates.",
        ),
    ),
)

_VS_QGD = MiddlegameChapter(
    id="vs_qgd",
    title="vs Queen's Gambit Declined",
    description="Use Ne5, the e4 break and the minority attack",
    theme="Minority Attack",
    master_game=AnnotatedGame(
        id="game_vs_qgd_1",
        title="London vs QGD: The Classic Minority Attack",
        players="Jobava vs Karjakin, 2014",
        result="1-0",
        pgn=(
            "1. d4 Nf6 2. Bf4 d5 3. e3 e6 4. Nf3 Be7 5. Nbd2 O-O 6. c3 c6 7. Bd3 Nbd7 "
            "8. O-O Re8 9. Qe2 Nf8 10. Ne5 Ng6 11. Nxg6 hxg6 12. e4 dxe4 13. Nxe4 Nxe4 "
            "14. Bxe4 Bd6 15. Bg3 Bxg3 16. hxg3 Qd6 17. Rad1 Bd7 18. b4 Rad8 "
            "19. a4 Bc8 20. b5 1-0"
        ),
        annotations=(
            _note(10, "Ne5", "The Central Outpost",
                  "The knight settles on e5; ...f6 would weaken Black's king."),
            _note(12, "e4", "The Central Break",
                  "After the knight trade the e4 break frees the d3 bishop."),
            _note(15, "Bg3", "Strategic Bishop Retreat",
                  "Meeting ...Bd6 with Bg3 trades dark-squared bishops on White's terms."),
            _note(18, "b4", "Starting the Minority Attack",
                  "The b-pawn heads for b5 to strike at c6."),
            _note(20, "b5", "Completing the Minority Attack",
                  "b5 leaves Black with a weak c-pawn or an isolated d-pawn."),
        ),
        key_takeaways=(
            "Establish Ne5 early against the QGD",
            "Time the e4 break after piece exchanges",
            "The minority attack b4-b5 targets c6",
            "Trading dark-squared bishops weakens Black's king",
        ),
    ),
    positions=(
        TrainingPosition(
            id="pos_qgd_1",
            fen="r1bqr1k1/pp1nbppp/2p1pn2/3p4/3P1B2/2PBPN2/PP1NQPPP/R4RK1 w - - 5 9",
            question="Classic London setup vs the QGD. Where does the f3 knight belong?",
            kind=FIND_MOVE,
            correct_moves=("Ne5",),
            hints=(
                "Find the strongest outpost",
                "Which central square can no black pawn attack easily?",
                "e5 is the London knight's favorite square",
            ),
            explanation="Ne5 controls d7, f7, c6 and g6; ...f6 would weaken Black too much.",
        ),
        TrainingPosition(
            id="pos_qgd_2",
            fen="r1bqr1k1/pp2bpp1/2p1pnp1/3p4/3P1B2/2PBP3/PP1NQPPP/R4RK1 w - - 0 12",
            question="The knights are traded and Black's center is solid. What is the key break?",
            kind=FIND_MOVE,
            correct_moves=("e4",),
            hints=(
                "Challenge the d5 pawn",
                "The d3 bishop wants an open diagonal",
                "e4 opens the position in White's favor",
            ),
            explanation="e4 opens the centre at the right moment and activates the bishop.",
        ),
        TrainingPosition(
            id="pos_qgd_3",
            fen="r1b1r1k1/pp3pp1/2pqp1p1/8/3PB3/2P3P1/PP2QPP1/3R1RK1 w - - 2 17",
            question="How should White begin the minority attack?",
            kind=MULTIPLE_CHOICE,
            options=(
                _choice("A) Play b4, starting the minority attack",
                        "b4 then b5 attacks c6 and creates lasting weaknesses.", True),
                _choice("B) Play f4 for a kingside attack",
                        "f4 weakens your own king and ignores the queenside."),
                _choice("C) Play Rd3 to double rooks",
                        "The rooks can wait; start the pawn advance first."),
                _choice("D) Trade queens with Qd3",
                        "Keep the queens; you have the more active game."),
            ),
            explanation="The minority attack is White's main weapon against this structure.",
        ),
        TrainingPosition(
            id="pos_qgd_4",
            fen="r1bqr1k1/pp1nbppp/2p1pn2/3pN3/3P1B2/2PBP3/PP1NQPPP/R4RK1 w - - 0 10",
            question="Black wants to trade off your knight on e5. What should you be ready to do?",
            kind=MULTIPLE_CHOICE,
            options=(
                _choice("A) Recapture with dxe5",
                        "That opens the position for Black's bishops."),
                _choice("B) Recapture with Bxe5",
                        "Keep the dark-squared bishop for the attack."),
                _choice("C) If Black plays ...Ng6, take with Nxg6",
                        "After Nxg6 hxg6 the h-file can be used by White's rook.", True),
                _choice("D) Move the knight away",
                        "Never retreat from the best outpost on the board."),
            ),
            explanation="Nxg6 hxg6 opens the h-file, a recurring resource in this line.",
        ),
        TrainingPosition(
            id="pos_qgd_5",
            fen="2brr1k1/pp3pp1/2pqp1p1/8/PP1PB3/2P3P1/4QPP1/3R1RK1 w - - 1 20",
            question="b4 and a4 are in. Find the decisive break.",
            kind=FIND_MOVE,
            correct_moves=("b5",),
            hints=(
                "Keep advancing on the queenside",
                "Aim straight at c6",
                "b5 creates permanent damage",
            ),
            explanation="b5 strikes at c6 and leaves Black with a lasting pawn weakness.",
        ),
    ),
)

_VS_QID = MiddlegameChapter(
    id="vs_qid",
    title="vs Queen's Indian Defense",
    description="Keep the bishop pair and dominate the center",
    theme="Bishop Pair",
    master_game=AnnotatedGame(
        id="game_vs_qid_1",
        title="London vs QID: Central Domination",
        players="Rapport vs Giri, 2019",
        result="1-0",
        pgn=(
            "1. d4 Nf6 2. Bf4 e6 3. e3 b6 4. Nf3 Bb7 5. Nbd2 Be7 6. h3 O-O 7. Bd3 d6 "
            "8. O-O Nbd7 9. c3 c5 10. Qe2 Qc7 11. Rae1 Rfe8 12. e4 cxd4 13. cxd4 e5 "
            "14. dxe5 dxe5 15. Bh2 Nc5 16. Bc4 Rad8 17. Nb3 Ncxe4 18. Nxe5 Qxe5 "
            "19. Bxe5 Rd2 20. Qe3 1-0"
        ),
        annotations=(
            _note(12, "e4", "Central Expansion",
                  "Two pawns abreast in the centre; the b7 bishop hits a wall."),
            _note(14, "dxe5", "Opening the Position",
                  "Open lines favor the side with the bishop pair."),
            _note(15, "Bh2", "Preserving the Bishop",
                  "The trademark retreat keeps the dark-squared bishop."),
            _note(16, "Bc4", "Active Bishop Placement",
                  "The light-squared bishop aims at f7 alongside its partner on h2."),
            _note(20, "Qe3", "Maintaining Coordination",
                  "The queen centralizes and hits the rook on d2."),
        ),
        key_takeaways=(
            "Push e4 to seize the center against the fianchetto",
            "Bh2 preserves the dark-squared bishop",
            "Activate both bishops; the pair is your advantage",
            "Keep the position open when you have two bishops",
        ),
    ),
    positions=(
        TrainingPosition(
            id="pos_qid_1",
            fen="r3r1k1/pbqnbppp/1p1ppn2/2p5/3P1B2/2PBPN1P/PP1NQPP1/4RRK1 w - - 4 12",
            question="London setup vs the QID. What is the key pawn break?",
            kind=FIND_MOVE,
            correct_moves=("e4",),
            hints=(
                "Expand in the center",
                "Your pieces already support a central advance",
                "e4 opens lines for both bishops",
            ),
            explanation="e4 grabs space, blunts the b7 bishop and wakes up White's bishops.",
        ),
        TrainingPosition(
            id="pos_qid_2",
            fen="r3r1k1/pbqnbppp/1p3n2/4p3/4PB2/3B1N1P/PP1NQPP1/4RRK1 w - - 0 15",
            question="...e5 attacks your bishop. Where should it go?",
            kind=FIND_MOVE,
            correct_moves=("Bh2",),
            hints=(
                "Find a safe square that keeps the bishop active",
                "Look at the h2-b8 diagonal",
                "h2 is the London bishop's home",
            ),
            explanation="On h2 the bishop still covers e5 and d6 and cannot be traded off easily.",
        ),
        TrainingPosition(
            id="pos_qid_3",
            fen="r3r1k1/pbqnbppp/1p3n2/4p3/4P3/3B1N1P/PP1NQPPB/4RRK1 w - - 0 16",
            question="How should you activate the light-squared bishop?",
            kind=MULTIPLE_CHOICE,
            options=(
                _choice("A) Play Bc4, targeting f7",
                        "The most active square, working with the bishop on h2.", True),
                _choice("B) Play Bb5, pinning the knight",
                        "...a6 simply chases it away."),
                _choice("C) Play Be2 to keep it safe",
                        "Too passive for a bishop pair."),
                _choice("D) Leave it on d3 and play f4",
                        "f4 weakens your own king."),
            ),
            explanation="Bc4 and Bh2 together pressure f7 and the long diagonal.",
        ),
        TrainingPosition(
            id="pos_qid_4",
            fen="r3r1k1/pbq1bppp/1p3n2/2n1p3/2B1P3/5N1P/PP1NQPPB/4RRK1 w - - 0 16",
            question="...Nc5 is challenging e4. What is White's best approach?",
            kind=MULTIPLE_CHOICE,
            options=(
                _choice("A) Play Nb3, challenging the knight",
                        "Piece play keeps the initiative and the bishop pair.", True),
                _choice("B) Play f3 to protect e4",
                        "Passive, and it weakens the king."),
                _choice("C) Play e5 to gain space",
                        "This hands the knight the d3 and e4 squares."),
                _choice("D) Trade bishops with Bxb7",
                        "The bishop pair is your main asset."),
            ),
            explanation="Answer pressure on the center with pieces, not passive pawn moves.",
        ),
        TrainingPosition(
            id="pos_qid_5",
            fen="r2qr1k1/pb2bppp/1pn2n2/2ppp3/3P1B2/2PBPN1P/PP1N1PP1/R2QR1K1 w - - 0 12",
            question="Black has pawns on d5 and e5. How do you activate your position?",
            kind=FIND_MOVE,
            correct_moves=("e4",),
            hints=(
                "Challenge the center",
                "Do not let Black keep both center pawns",
                "The e-pawn break opens lines for the bishops",
            ),
            explanation="e4 challenges the centre before Black can consolidate it.",
        ),
    ),
)

_VS_DUTCH = MiddlegameChapter(
    id="vs_dutch",
    title="vs Dutch Defense",
    description="Exploit the holes created by ...f5",
    theme="Exploiting Weaknesses",
    master_game=AnnotatedGame(
        id="game_vs_dutch_1",
        title="London vs Dutch: Punishing the Weakened King",
        players="Carlsen vs Van Foreest, 2020",
        result="1-0",
        pgn=(
            "1. d4 f5 2. Bf4 Nf6 3. e3 e6 4. Nf3 d6 5. Bd3 Be7 6. O-O O-O 7. Nbd2 Nc6 "
            "8. c3 Bd7 9. Re1 Qe8 10. e4 fxe4 11. Nxe4 Nxe4 12. Bxe4 d5 13. Bd3 Bd6 "
            "14. Bg3 Bxg3 15. hxg3 Qf7 16. Ne5 Nxe5 17. dxe5 Bc6 18. Qg4 Qg6 "
            "19. Qe2 Rad8 20. f4 1-0"
        ),
        annotations=(
            _note(10, "e4", "Exploiting the Weakened Kingside",
                  "...f5 gave up control of e5 and e6; e4 opens the position."),
            _note(13, "Bd3", "Active Bishop Retreat",
                  "The bishop returns to its best diagonal, aiming at h7."),
            _note(16, "Ne5", "The Dream Outpost",
                  "With the f-pawn gone, no pawn can ever chase this knight."),
            _note(17, "dxe5", "Permanent Space Advantage",
                  "The e5 pawn controls d6 and f6 and cramps Black."),
            _note(20, "f4", "Locking Down the Position",
                  "f4 supports e5 for good; Black is left passive."),
        ),
        key_takeaways=(
            "Against the Dutch, e4 is the critical break",
            "Ne5 is an outpost no pawn can challenge after ...f5",
            "The e5 pawn gives White lasting space",
            "Punish the weakened king with active pieces",
        ),
    ),
    positions=(
        TrainingPosition(
            id="pos_dutch_1",
            fen="r3qrk1/pppbb1pp/2nppn2/5p2/3P1B2/2PBPN2/PP1N1PPP/R2QR1K1 w - - 3 10",
            question="Black has played ...f5. What is White's best strategy?",
            kind=MULTIPLE_CHOICE,
            options=(
                _choice("A) Play e4 to open the center",
                        "After ...fxe4 Nxe4 White owns the centre and e5.", True),
                _choice("B) Play h3 and develop slowly",
                        "Too slow; Black gets time for a kingside attack."),
                _choice("C) Play g4 to attack f5",
                        "g4 weakens your own king."),
                _choice("D) Play b4 for queenside play",
                        "Strike in the centre instead."),
            ),
            explanation="...f5 left holes on e5 and e6; e4 exploits them at once.",
        ),
        TrainingPosition(
            id="pos_dutch_2",
            fen="r3qrk1/pppbb1pp/2n1p3/3p4/3PBB2/2P2N2/PP3PPP/R2QR1K1 w - - 0 13",
            question="...d5 attacks the bishop on e4. Where should it retreat?",
            kind=FIND_MOVE,
            correct_moves=("Bd3",),
            hints=(
                "The bishop needs an active diagonal",
                "Aim at the kingside",
                "d3 points at h7",
            ),
            explanation="Bd3 aims at h7 and complements the dark-squared bishop.",
        ),
        TrainingPosition(
            id="pos_dutch_3",
            fen="r4rk1/pppb1qpp/2n1p3/3p4/3P4/2PB1NP1/PP3PP1/R2QR1K1 w - - 1 16",
            question="...f5 weakened Black's position. Where does your knight belong?",
            kind=FIND_MOVE,
            correct_moves=("Ne5",),
            hints=(
                "Which square did ...f5 give up?",
                "Find the strongest outpost",
                "No pawn can challenge e5 any more",
            ),
            explanation="Ne5 sits on a permanent outpost and eyes f7, d7 and g6.",
        ),
        TrainingPosition(
            id="pos_dutch_4",
            fen="r1b2rk1/pppnq1pp/4pn2/3p1p2/3PNB2/3BPN2/PPP2PPP/R2QR1K1 w - - 0 10",
            question="You have a strong center. When should White play e4?",
            kind=MULTIPLE_CHOICE,
            options=(
                _choice("A) As soon as possible",
                        "Black's pieces are uncoordinated; strike now.", True),
                _choice("B) Wait and improve the pieces first",
                        "Waiting lets Black consolidate."),
                _choice("C) Play c4 instead",
                        "c4 does not target the holes left by ...f5."),
                _choice("D) Play g3 to support the bishop",
                        "Slow and unnecessary."),
            ),
            explanation="Play e4 as soon as it is prepared, before Black organizes a defence.",
        ),
        TrainingPosition(
            id="pos_dutch_5",
            fen="3r1rk1/ppp3pp/2b1p1q1/3pP3/8/2PB2P1/PP2QPP1/R3R1K1 w - - 5 20",
            question="White has a strong pawn on e5. How do you lock in the advantage?",
            kind=FIND_MOVE,
            correct_moves=("f4",),
            hints=(
                "Support e5 for good",
                "Build a pawn chain",
                "f4 secures the space advantage",
            ),
            explanation="f4 builds an e5-f4 chain that Black can never undermine.",
        ),
    ),
)

CHAPTERS: dict[str, MiddlegameChapter] = {
    chapter.id: chapter
    for chapter in (_KINGSIDE_ATTACK, _VS_KID, _VS_QGD, _VS_QID, _VS_DUTCH)
}


def get_chapter(chapter_id: str) -> MiddlegameChapter:
    """Look up a chapter by id.

    Raises:
        KeyError: If no chapter has that id.
    """
    return CHAPTERS[chapter_id]


def get_position(chapter_id: str, position_id: str) -> TrainingPosition:
    """Look up a training position within a chapter.

    Raises:
        KeyError: If the chapter or the position does not exist.
    """
    for position in get_chapter(chapter_id).positions:
        if position.id == position_id:
            return position
    raise KeyError(position_id)


# ---------------------------------------------------------------------------
# Annotated game viewer
# ---------------------------------------------------------------------------


def master_game_moves(game: AnnotatedGame) -> tuple[str, ...]:
    """SAN moves of a master game's main line.

    An illegal move ends the line early; the moves before it are kept.
    """
    pgn_game = chess.pgn.read_game(io.StringIO(game.pgn))
    if pgn_game is None:
        return ()
    if pgn_game.errors:
        logger.warning("Master game %s stops early: %s", game.id, pgn_game.errors[0])
    board = pgn_game.board()
    moves = []
    for move in pgn_game.mainline_moves():
        moves.append(board.san(move))
        board.push(move)
    return tuple(moves)


def as_recorded_game(game: AnnotatedGame) -> RecordedGame:
    """Wrap a master game so the replay controller can step through it."""
    white, _, black = game.players.partition(" vs ")
    return RecordedGame(
        id=game.id,
        timestamp=0,
        difficulty="master",
        result=_RESULTS.get(game.result, GameResult()),
        pgn=game.pgn,
        move_history=master_game_moves(game),
        white_player=white.strip(),
        black_player=black.split(",")[0].strip(),
    )


class AnnotatedGameViewer:
    """Step through a master game and surface the annotation for each move."""

    def __init__(self, game: AnnotatedGame, controller: ReplayController | None = None) -> None:
        self.game = game
        self._controller = controller or ReplayController()
        self._annotations = game.annotations_by_move()
        self._recorded = as_recorded_game(game)
        self._controller.enter_replay(self._recorded)

    @property
    def controller(self) -> ReplayController:
        return self._controller

    @property
    def index(self) -> int:
        """Half-moves applied to the starting position."""
        return self._controller.current_index

    @property
    def total_moves(self) -> int:
        return self._recorded.move_count

    @property
    def move_number(self) -> int:
        """Full-move number of the last move shown (0 at the start)."""
        return (self.index + 1) // 2

    @property
    def total_full_moves(self) -> int:
        return (self.total_moves + 1) // 2

    @property
    def at_end(self) -> bool:
        return self._controller.at_end

    def next(self) -> int:
        return self._controller.step(+1)

    def prev(self) -> int:
        return self._controller.step(-1)

    def go_to(self, index: int) -> int:
        return self._controller.go_to(index)

    def annotation_at(self, index: int | None = None) -> MoveAnnotation | None:
        """Annotation for the move that led to ``index``, if there is one."""
        if index is None:
            index = self.index
        if index <= 0 or index > self.total_moves:
            return None
        san = self._recorded.move_history[index - 1]
        for annotation in self._annotations.get((index + 1) // 2, ()):
            if annotation.move == san:
                return annotation
        return None

    def annotated_indices(self) -> list[int]:
        return [i for i in range(1, self.total_moves + 1) if self.annotation_at(i) is not None]

    def next_annotation(self) -> int:
        """Jump to the next annotated move; stays put if there is none."""
        for index in self.annotated_indices():
            if index > self.index:
                return self.go_to(index)
        return self.index

    def view(self) -> dict:
        view = replay_view(self._controller)
        annotation = self.annotation_at()
        view["annotation"] = asdict(annotation) if annotation else None
        view["progress"] = {"move": self.move_number, "of": self.total_full_moves}
        if self.at_end:
            view["key_takeaways"] = list(self.game.key_takeaways)
        return view


# ---------------------------------------------------------------------------
# Training positions
# ---------------------------------------------------------------------------


def _option_index(position: TrainingPosition, choice: int | str) -> int:
    if isinstance(choice, str):
        letter = choice.strip().upper()[:1]
        if not letter:
            raise ValueError("Empty choice")
        index = ord(letter) - ord("A")
    else:
        index = choice
    if not 0 <= index < len(position.options):
        raise ValueError(f"No option {choice!r} for {position.id}")
    return index


def check_choice(position: TrainingPosition, choice: int | str) -> AnswerResult:
    """Grade a multiple-choice answer given as an index or a letter.

    Raises:
        ValueError: If the position is not multiple choice or the choice
            does not name one of its options.
    """
    if position.kind != MULTIPLE_CHOICE:
        raise ValueError(f"{position.id} is not a multiple-choice position")
    option = position.options[_option_index(position, choice)]
    return AnswerResult(option.is_correct, option.label, option.explanation, position.explanation)


def _grade_move(position: TrainingPosition, board: chess.Board, move: chess.Move) -> AnswerResult:
    san = board.san(move)
    if san in position.correct_moves:
        return AnswerResult(True, san, "Correct!", position.explanation)
    best = " or ".join(position.correct_moves)
    return AnswerResult(False, san, f"Not quite. Best move: {best}", position.explanation)


def check_move(position: TrainingPosition, notation: str) -> AnswerResult | None:
    """Grade a find-the-move answer given in SAN (or UCI).

    Returns:
        The graded answer, or None if the move is illegal in the position.

    Raises:
        ValueError: If the position is not a find-the-move position.
    """
    if position.kind != FIND_MOVE:
        raise ValueError(f"{position.id} is not a find-the-move position")
    board = chess.Board(position.fen)
    move = parse_notation(board, notation)
    if move is None:
        return None
    return _grade_move(position, board, move)


def check_board_move(
    position: TrainingPosition,
    from_square: str,
    to_square: str,
    promotion: str | None = "q",
) -> AnswerResult | None:
    """Same as check_move, for a move given as origin and destination."""
    if position.kind != FIND_MOVE:
        raise ValueError(f"{position.id} is not a find-the-move position")
    board = chess.Board(position.fen)
    move = coordinate_to_move(board, from_square, to_square, promotion)
    if move is None:
        return None
    return _grade_move(position, board, move)


def hints_for(position: TrainingPosition, count: int) -> list[str]:
    """The first ``count`` hints, clamped to what the position has."""
    return list(position.hints[:max(0, count)])
