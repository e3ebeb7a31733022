"""Error taxonomy shared by the hook pipeline."""


class ConvexHooksError(Exception):
    """Base class for all convex-hooks errors."""


class ConfigError(ConvexHooksError):
    """Raised when ``.convex-hooks.yml`` cannot be read or validated."""


class CheckExecutionError(ConvexHooksError):
    """A single check raised while evaluating a file.

    Never propagated past the check runner; it is turned into a finding.
    """

    def __init__(self, check_id: str, cause: BaseException) -> None:
        super().__init__(f"check '{check_id}' failed internally: {type(cause).__name__}: {cause}")
        self.check_id = check_id
        self.cause = cause


class CodegenFailure(ConvexHooksError):
    """The codegen command exited non-zero or timed out."""

    def __init__(self, output: str, *, returncode: int | None = None, timed_out: bool = False) -> None:
        super().__init__(output)
        self.output = output
        self.returncode = returncode
        self.timed_out = timed_out


class DeploymentUnavailable(ConvexHooksError):
    """The deployment could not be queried and no earlier snapshot exists."""


class ConfigurationMissing(ConvexHooksError):
    """Deployment credentials are absent from the environment."""

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"Missing environment variable(s): {', '.join(missing)}")
        self.missing = missing
