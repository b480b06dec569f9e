import hashlib
import hmac
import logging
import os
import re
import secrets
import sys
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from fractions import Fraction
from numbers import Integral
from typing import Optional, Sequence, Union

from dotenv import load_dotenv
from tabulate import tabulate

logger = logging.getLogger(__name__)

FACES_PER_DIE = 6
KEY_BYTES = 32
FIRST_MOVE_RANGE = 2
DIAGONAL_PROBABILITY = Fraction(1, 3)

_LOWER_HEX_KEY = re.compile(r"[0-9a-f]{%d}" % (KEY_BYTES * 2))

# ==============================================================================
# 1. Error Handling Classes
# ==============================================================================

class FairDiceError(Exception):
    """Base class for all errors raised by the fair dice game."""


class InvalidRangeError(FairDiceError, ValueError):
    """A random range that is not a positive integer."""


class ProtocolStateError(FairDiceError, RuntimeError):
    """A fair-random round method was called out of sequence."""


class InvalidPeerValueError(FairDiceError, ValueError):
    """A peer contribution outside the round's range."""


class InvalidDiceConfigurationError(FairDiceError, ValueError):
    """A die that does not have exactly six integer faces."""


class UserExit(Exception):
    """Raised by the console when the user asks to leave the game."""


class ValidationError(FairDiceError):
    """
    Custom exception for argument validation errors.
    Provides a formatted message including an example of correct usage.
    """
    _invocation_command = "python"

    @staticmethod
    def set_invocation_command(command: str):
        """Sets the command used to run the script (e.g., 'python' or 'py')."""
        ValidationError._invocation_command = command

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        script_name = sys.argv[0] if sys.argv else 'fair_dice.py'
        example = (
            f"{ValidationError._invocation_command} {script_name} "
            f"2,2,4,4,9,9 6,8,1,1,8,6 7,5,3,7,5,3"
        )
        return f"\nArgument Error: {self.message}\n\nExample usage:\n{example}\n"

# ==============================================================================
# 2. Configuration
# ==============================================================================

@dataclass(frozen=True)
class GameConfig:
    """
    Runtime options for the console game.
    Fields:
        min_dice (int): Fewest dice configurations accepted on the command line.
        log_level (str): Level name passed to logging.basicConfig.
        invocation_command (str): Interpreter command shown in usage examples.
    """
    min_dice: int = 3
    log_level: str = "WARNING"
    invocation_command: str = "python"

    @classmethod
    def from_env(cls) -> "GameConfig":
        load_dotenv()
        command = 'py' if 'py.exe' in sys.executable.lower() else 'python'
        raw_min_dice = os.getenv("FAIR_DICE_MIN_DICE", "3")
        try:
            min_dice = int(raw_min_dice)
        except ValueError:
            raise ValidationError(f"FAIR_DICE_MIN_DICE must be an integer, got {raw_min_dice!r}.") from None
        # A game needs one die for each player.
        if min_dice < 2:
            raise ValidationError(f"FAIR_DICE_MIN_DICE must be at least 2, got {min_dice}.")
        log_level = os.getenv("FAIR_DICE_LOG_LEVEL", "WARNING").upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ValidationError(f"FAIR_DICE_LOG_LEVEL is not a logging level: {log_level!r}.")
        return cls(min_dice=min_dice, log_level=log_level, invocation_command=command)

# ==============================================================================
# 3. Secure Random Source
# ==============================================================================

class SecureRandom:
    """
    Uniform integers and keys drawn from the operating system's CSPRNG.

    uniform_int uses secrets.randbelow, which rejects out-of-range samples
    instead of reducing a fixed-width draw modulo max_val, so every value in
    [0, max_val) is exactly equally likely.
    """

    @staticmethod
    def uniform_int(max_val: int) -> int:
        if isinstance(max_val, bool) or not isinstance(max_val, Integral) or max_val <= 0:
            raise InvalidRangeError(f"Range must be a positive integer, got {max_val!r}.")
        return secrets.randbelow(int(max_val))

    @staticmethod
    def generate_key() -> bytes:
        return secrets.token_bytes(KEY_BYTES)

# ==============================================================================
# 4. Commitment (commit / reveal)
# ==============================================================================

def calculate_hmac(key: bytes, message_int: int) -> str:
    message_bytes = str(message_int).encode('ascii')
    return hmac.new(key, message_bytes, hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class Commitment:
    """
    A secret key and value bound together by HMAC-SHA256.

    Only the mac is meant to be shown before the reveal, so the key and the
    value are left out of repr().
    """
    secret_key: str = field(repr=False)
    chosen_value: int = field(repr=False)
    mac: str
    value_range: int

    @classmethod
    def commit(cls, value_range: int) -> "Commitment":
        chosen_value = SecureRandom.uniform_int(value_range)
        return cls.from_key(SecureRandom.generate_key(), chosen_value, value_range)

    @classmethod
    def from_key(cls, key: bytes, chosen_value: int, value_range: int) -> "Commitment":
        if isinstance(value_range, bool) or not isinstance(value_range, Integral) or value_range <= 0:
            raise InvalidRangeError(f"Range must be a positive integer, got {value_range!r}.")
        if len(key) != KEY_BYTES:
            raise ValueError(f"Secret key must be {KEY_BYTES} bytes, got {len(key)}.")
        if not 0 <= chosen_value < value_range:
            raise ValueError(f"Chosen value {chosen_value} is outside 0..{value_range - 1}.")
        return cls(
            secret_key=key.hex(),
            chosen_value=chosen_value,
            mac=calculate_hmac(key, chosen_value),
            value_range=value_range,
        )

    @staticmethod
    def verify(mac: Union[str, "Commitment"], secret_key: str, chosen_value: int) -> bool:
        """
        Check that secret_key and chosen_value open the given mac.

        Accepts either the published mac string or the Commitment itself.
        Anything that is not the canonical key form (64 lowercase hex
        digits) or not an integer value simply fails verification.
        """
        if isinstance(mac, Commitment):
            mac = mac.mac
        if not isinstance(secret_key, str) or not _LOWER_HEX_KEY.fullmatch(secret_key):
            return False
        if isinstance(chosen_value, bool) or not isinstance(chosen_value, Integral):
            return False
        if not isinstance(mac, str):
            return False
        expected = calculate_hmac(bytes.fromhex(secret_key), int(chosen_value))
        return hmac.compare_digest(expected.encode('ascii'), mac.encode('utf-8'))

# ==============================================================================
# 5. Fair Random Protocol
# ==============================================================================

class RoundState(Enum):
    COMMITTED = "committed"
    PEER_CONTRIBUTED = "peer_contributed"
    REVEALED = "revealed"
    ABORTED = "aborted"


class Player(Enum):
    COMPUTER = "computer"
    USER = "user"


@dataclass(frozen=True)
class RoundReveal:
    result: int
    self_value: int
    peer_value: int
    secret_key: str
    mac: str
    value_range: int

    def verify(self) -> bool:
        return Commitment.verify(self.mac, self.secret_key, self.self_value)


class FairRandomProtocol:
    """
    One commit/reveal round between the computer ("self") and the user ("peer").

    The computer commits to a value and publishes only its HMAC, the user
    contributes a value in [0, value_range), then the key is revealed and the
    result is (self_value + peer_value) mod value_range. Since the self value
    is fixed before the peer value is known, neither side can steer the
    result on its own.
    """

    def __init__(self, commitment: Commitment):
        self._commitment = commitment
        self._peer_value: Optional[int] = None
        self._state = RoundState.COMMITTED

    @classmethod
    def start(cls, value_range: int, commitment: Optional[Commitment] = None) -> "FairRandomProtocol":
        if commitment is None:
            commitment = Commitment.commit(value_range)
        elif commitment.value_range != value_range:
            raise InvalidRangeError(
                f"Commitment covers 0..{commitment.value_range - 1}, round needs 0..{value_range - 1}."
            )
        logger.debug(f"Round committed over range {value_range} (HMAC={commitment.mac})")
        return cls(commitment)

    @property
    def state(self) -> RoundState:
        return self._state

    @property
    def value_range(self) -> int:
        return self._commitment.value_range

    @property
    def mac(self) -> str:
        return self._commitment.mac

    def contribute(self, peer_value: int) -> None:
        self._require(RoundState.COMMITTED, "contribute")
        if (
            isinstance(peer_value, bool)
            or not isinstance(peer_value, Integral)
            or not 0 <= peer_value < self.value_range
        ):
            raise InvalidPeerValueError(
                f"Peer value must be an integer in 0..{self.value_range - 1}, got {peer_value!r}."
            )
        self._peer_value = int(peer_value)
        self._state = RoundState.PEER_CONTRIBUTED

    def reveal(self) -> RoundReveal:
        self._require(RoundState.PEER_CONTRIBUTED, "reveal")
        commitment = self._commitment
        result = (commitment.chosen_value + self._peer_value) % commitment.value_range
        self._state = RoundState.REVEALED
        logger.info(
            f"Round revealed: ({commitment.chosen_value} + {self._peer_value}) "
            f"mod {commitment.value_range} = {result}"
        )
        return RoundReveal(
            result=result,
            self_value=commitment.chosen_value,
            peer_value=self._peer_value,
            secret_key=commitment.secret_key,
            mac=commitment.mac,
            value_range=commitment.value_range,
        )

    def abort(self) -> None:
        if self._state in (RoundState.REVEALED, RoundState.ABORTED):
            raise ProtocolStateError(f"Cannot abort a round that is already {self._state.value}.")
        self._state = RoundState.ABORTED
        logger.info(f"Round over range {self.value_range} aborted (HMAC={self.mac})")

    def _require(self, expected: RoundState, action: str) -> None:
        if self._state is not expected:
            raise ProtocolStateError(
                f"Cannot {action} while the round is {self._state.value}; "
                f"expected {expected.value}."
            )


def first_mover(result: int) -> Player:
    # (computer_bit + guess) mod 2 is 0 exactly when the user guessed the bit.
    return Player.USER if result == 0 else Player.COMPUTER

# ==============================================================================
# 6. Dice Configurations and Win Probabilities
# ==============================================================================

DiceLike = Union["DiceConfiguration", Sequence[int]]


@dataclass(frozen=True)
class DiceConfiguration:
    faces: tuple

    def __post_init__(self):
        try:
            faces = tuple(self.faces)
        except TypeError:
            raise InvalidDiceConfigurationError(
                f"Dice faces must be a sequence of integers, got {self.faces!r}."
            ) from None
        if len(faces) != FACES_PER_DIE:
            raise InvalidDiceConfigurationError(
                f"A die must have exactly {FACES_PER_DIE} faces, got {len(faces)}."
            )
        if any(isinstance(f, bool) or not isinstance(f, Integral) for f in faces):
            raise InvalidDiceConfigurationError(f"All dice faces must be integers, got {faces!r}.")
        object.__setattr__(self, "faces", tuple(int(f) for f in faces))

    @classmethod
    def of(cls, value: DiceLike) -> "DiceConfiguration":
        return value if isinstance(value, cls) else cls(value)

    def __str__(self) -> str:
        return ",".join(map(str, self.faces))

    def __len__(self) -> int:
        return len(self.faces)

    def __getitem__(self, index: int) -> int:
        return self.faces[index]


@dataclass(frozen=True)
class ProbabilityMatrix:
    """Rows are the user's die, columns the computer's die."""
    labels: tuple
    cells: tuple

    def __len__(self) -> int:
        return len(self.labels)

    def cell(self, user_index: int, computer_index: int) -> float:
        return self.cells[user_index][computer_index]

    def rows(self) -> list:
        return [list(row) for row in self.cells]


class WinProbabilityModel:
    @staticmethod
    def win_fraction(a: DiceLike, b: DiceLike) -> Fraction:
        die_a, die_b = DiceConfiguration.of(a), DiceConfiguration.of(b)
        wins = sum(1 for fa in die_a.faces for fb in die_b.faces if fa > fb)
        return Fraction(wins, len(die_a) * len(die_b))

    @classmethod
    def win_probability(cls, a: DiceLike, b: DiceLike) -> float:
        return float(cls.win_fraction(a, b))

    @classmethod
    def probability_matrix(cls, configs: Sequence[DiceLike]) -> ProbabilityMatrix:
        dice = [DiceConfiguration.of(c) for c in configs]
        cells = tuple(
            tuple(
                float(DIAGONAL_PROBABILITY) if i == j else cls.win_probability(user_die, computer_die)
                for j, computer_die in enumerate(dice)
            )
            for i, user_die in enumerate(dice)
        )
        return ProbabilityMatrix(labels=tuple(str(d) for d in dice), cells=cells)

# ==============================================================================
# 7. Command-Line Argument Parser
# ==============================================================================

class DiceParser:
    @staticmethod
    def parse(args: list[str], min_dice: int = 3) -> list[DiceConfiguration]:
        min_dice = max(min_dice, 2)
        if len(args) < min_dice:
            raise ValidationError(
                f"You must provide at least {min_dice} dice configurations as arguments."
            )
        dice_list = []
        for arg in args:
            try:
                dice_list.append(DiceConfiguration(tuple(DiceParser.parse_face(f) for f in arg.split(','))))
            except (ValueError, InvalidDiceConfigurationError):
                raise ValidationError(
                    f"Invalid dice configuration: {arg}. "
                    f"Each dice must have exactly {FACES_PER_DIE} integer sides."
                ) from None
        return dice_list

    @staticmethod
    def parse_face(text: str) -> int:
        """Parse one face; integral decimal text such as '2.0' or '1e3' is accepted."""
        try:
            value = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"Not a number: {text!r}") from None
        if not value.is_finite() or value != value.to_integral_value():
            raise ValueError(f"Not an integer: {text!r}")
        return int(value)

# ==============================================================================
# 8. Help Table Generation
# ==============================================================================

class HelpTableGenerator:
    @staticmethod
    def generate_table(matrix: ProbabilityMatrix) -> str:
        headers = ["User dice v"] + list(matrix.labels)
        table_data = []
        for i, label in enumerate(matrix.labels):
            row = [label]
            for j, prob in enumerate(matrix.cells[i]):
                row.append(f"- ({prob:.4f})" if i == j else f"{prob:.4f}")
            table_data.append(row)

        intro = (
            "\n--- Probability of Win for the User ---\n"
            "Each cell is the chance that the User's die (row) beats the PC's die (column).\n"
        )
        return intro + tabulate(table_data, headers=headers, tablefmt="grid", disable_numparse=True)

# ==============================================================================
# 9. Console User Interface
# ==============================================================================

class GameUI:
    def display_message(self, text: str):
        print(text)

    def display_hmac(self, hmac_hex: str, value_range: int):
        print(f"I selected a random value in the range 0..{value_range - 1} (HMAC={hmac_hex}).")

    def display_key_and_move(self, key: str, move: int, name: str = "My selection"):
        print(f"{name}: {move} (KEY={key}).")

    def get_user_choice(self, prompt: str, options: list[str], allow_help: bool = True) -> str:
        while True:
            print(f"\n{prompt}")
            for i, option in enumerate(options):
                print(f" {i} - {option}")

            print(" X - Exit")
            if allow_help:
                print(" ? - Help")

            choice = input("Your selection: ").strip().lower()

            if choice == 'x':
                raise UserExit()
            if choice == '?' and allow_help:
                return '?'

            if choice.isdecimal():
                choice_int = int(choice)
                if 0 <= choice_int < len(options):
                    return str(choice_int)

            print("Invalid selection. Try again.")

# ==============================================================================
# 10. Fair Interaction (protocol rounds driven through the console)
# ==============================================================================

class FairInteraction:
    def __init__(self, ui: GameUI, help_table: str):
        self.ui = ui
        self.help_table = help_table

    def determine_first_player(self) -> Player:
        self.ui.display_message("\nLet's determine who makes the first move.")
        reveal = self._run_round(FIRST_MOVE_RANGE, "Try to guess my selection.")
        self.ui.display_key_and_move(reveal.secret_key, reveal.self_value)
        return first_mover(reveal.result)

    def throw_die(self, die: DiceConfiguration) -> int:
        num_faces = len(die)
        reveal = self._run_round(num_faces, f"Add your number modulo {num_faces}.")
        self.ui.display_key_and_move(reveal.secret_key, reveal.self_value, name="My number")
        self.ui.display_message(
            f"The result is {reveal.self_value} + {reveal.peer_value} = {reveal.result} (mod {num_faces})."
        )
        return die[reveal.result]

    def _run_round(self, value_range: int, prompt: str) -> RoundReveal:
        fair_round = FairRandomProtocol.start(value_range)
        self.ui.display_hmac(fair_round.mac, value_range)
        options = [str(i) for i in range(value_range)]
        try:
            while True:
                choice = self.ui.get_user_choice(prompt, options, allow_help=True)
                if choice != '?':
                    break
                self.ui.display_message(self.help_table)
        except UserExit:
            fair_round.abort()
            raise
        fair_round.contribute(int(choice))
        return fair_round.reveal()

# ==============================================================================
# 11. Main Game Controller
# ==============================================================================

class GameController:
    def __init__(self, dice: list[DiceConfiguration], ui: GameUI, interaction: FairInteraction):
        self.all_dice = dice
        self.ui = ui
        self.interaction = interaction

    def run(self):
        self.ui.display_message(self.interaction.help_table)
        while True:
            self._play_round()
            play_again = input("\nPlay another round? (y/n): ").strip().lower()
            if play_again != 'y':
                self.ui.display_message("Thanks for playing!")
                break

    def _play_round(self):
        first = self.interaction.determine_first_player()
        player_die, computer_die = self._select_dice(first)

        self.ui.display_message("It's time for my throw.")
        computer_throw = self.interaction.throw_die(computer_die)
        self.ui.display_message(f"My throw is {computer_throw}.")

        self.ui.display_message("It's time for your throw.")
        user_throw = self.interaction.throw_die(player_die)
        self.ui.display_message(f"Your throw is {user_throw}.")

        if user_throw > computer_throw:
            self.ui.display_message(f"You win ({user_throw} > {computer_throw})!")
        elif user_throw < computer_throw:
            self.ui.display_message(f"I win ({computer_throw} > {user_throw})!")
        else:
            self.ui.display_message(f"It's a tie ({user_throw} = {computer_throw})!")

    def _select_dice(self, first: Player):
        available_dice = list(self.all_dice)
        if first is Player.USER:
            self.ui.display_message("You make the first move.")
            player_die = self._get_player_die_choice(available_dice)
            available_dice.remove(player_die)
            computer_die = max(
                available_dice,
                key=lambda d: WinProbabilityModel.win_fraction(d, player_die),
            )
            self.ui.display_message(f"I choose the [{computer_die}] dice.")
        else:
            computer_die = available_dice[SecureRandom.uniform_int(len(available_dice))]
            available_dice.remove(computer_die)
            self.ui.display_message(f"I make the first move and choose the [{computer_die}] dice.")
            player_die = self._get_player_die_choice(available_dice)
        self.ui.display_message(f"You chose the [{player_die}] dice.")
        return player_die, computer_die

    def _get_player_die_choice(self, available_dice: list[DiceConfiguration]) -> DiceConfiguration:
        while True:
            options = [str(d) for d in available_dice]
            choice_str = self.ui.get_user_choice("Choose your dice:", options, allow_help=True)
            if choice_str == '?':
                self.ui.display_message(self.interaction.help_table)
                continue
            return available_dice[int(choice_str)]

# ==============================================================================
# 12. Main Execution Block
# ==============================================================================

def main(argv: Optional[list[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    try:
        config = GameConfig.from_env()
        logging.basicConfig(
            level=config.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        ValidationError.set_invocation_command(config.invocation_command)

        dice = DiceParser.parse(args, config.min_dice)

        ui = GameUI()
        help_table = HelpTableGenerator.generate_table(WinProbabilityModel.probability_matrix(dice))
        interaction = FairInteraction(ui, help_table)

        controller = GameController(dice, ui, interaction)
        controller.run()
    except ValidationError as e:
        print(e, file=sys.stderr)
        return 1
    except UserExit:
        print("Goodbye!")
        return 0
    except (KeyboardInterrupt, EOFError):
        print("\nGame interrupted. Goodbye!")
        return 0
    return 0


if __name__ == "__main__":
    sys.exit(main())
