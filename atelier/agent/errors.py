"""
Agent exceptions.

Only ModelCallError ends a run. Reference errors are raised while resolving
tool arguments and are turned into failed tool results by the dispatcher.
"""


class ModelCallError(RuntimeError):
    """The language-model service could not produce a response."""


class ImageReferenceError(LookupError):
    """Base class for image arguments that cannot be resolved."""

    def __init__(self, argument: str, ref: str = ""):
        self.argument = argument
        self.ref = ref
        super().__init__(self.describe())

    def describe(self) -> str:
        return f"Image reference for '{self.argument}' could not be resolved"


class MissingReferenceError(ImageReferenceError):
    """A required image argument was empty."""

    def describe(self) -> str:
        return f"Image reference is required for '{self.argument}' but none was supplied"


class UnknownReferenceError(ImageReferenceError):
    """The image argument does not match any image known to this run."""

    def describe(self) -> str:
        return f"Unknown image reference '{self.ref}' for '{self.argument}'"
