"""
Interactive prompts.

Workflows never call input() directly. They ask a Prompter to pick one
option from a list or to confirm an action, so tests and unattended runs can
supply their own answers.
"""

from typing import Callable, Optional, Protocol, Sequence, TypeVar

T = TypeVar('T')

YES_ANSWERS = ('yes', 'y')


class Prompter(Protocol):
    """Capability interface for user interaction."""

    def choose_one(self, options: Sequence[T], title: str) -> Optional[T]:
        """Pick one option, or None when the user cancels."""
        ...

    def confirm(self, prompt: str) -> bool:
        """Ask a yes/no question."""
        ...


class ConsolePrompter:
    """
    Prompter backed by the terminal.

    Args:
        input_func: Line reader (defaults to the builtin input)
        label: Turns an option into the text shown in the numbered list
    """

    def __init__(self, input_func: Callable[[str], str] = input,
                 label: Callable[[object], str] = str):
        self.input_func = input_func
        self.label = label

    def choose_one(self, options, title):
        if not options:
            print(f"\n{title}: nothing to choose from")
            return None

        print(f"\n{title}")
        for i, option in enumerate(options, 1):
            print(f"  {i}. {self.label(option)}")
        print(f"  0. Cancel")

        while True:
            choice = self.input_func(f"Enter choice (0-{len(options)}): ").strip()
            if choice == '0':
                return None
            if choice.isdigit() and 1 <= int(choice) <= len(options):
                return options[int(choice) - 1]
            print(f"  ✗ Invalid choice, please enter 0-{len(options)}")

    def confirm(self, prompt):
        answer = self.input_func(f"{prompt} (yes/no): ").strip().lower()
        return answer in YES_ANSWERS


class AutoApprovePrompter:
    """Non-interactive prompter: confirms everything, always picks the first option."""

    def choose_one(self, options, title):
        return options[0] if options else None

    def confirm(self, prompt):
        print(f"{prompt} (auto-approved)")
        return True
