"""Pipeline execution mixin.

Runs a list of named steps in order, feeding each step the previous
step's result, and prints a coloured status line per step.
"""

from __future__ import annotations

from typing import Iterable, Callable, Any
from abc import abstractmethod

from colorama import Fore, Style


class PipelineMixin:
    """Mixin for classes that run as multi-step pipelines.

    Usage:
        class MyPipeline(PipelineMixin):
            NAME = 'extraction'

            def _pipeline(self):
                return [
                    ('Step 1', self.step1_method, {}),
                    ('Step 2', self.step2_method, {'param': value}),
                ]

            def run(self):
                return self._execute_pipeline()
    """

    # Shown as the prefix of every status line
    NAME: str

    # Step names are padded to this width
    STEP_WIDTH = len('Extract Addresses')

    @abstractmethod
    def _pipeline(self, **kwargs: Any) -> Iterable[tuple[str, Callable, dict[str, Any]]]:
        """Define the pipeline steps.

        Returns:
            List of tuples: (step_name, function, kwargs)
        """
        ...

    def _execute_pipeline(self, progress: bool = True, **pipeline_kwargs: Any) -> Any:
        """Execute the pipeline and return the final result.

        Args:
            progress: Whether to print progress messages (default: True)
            **pipeline_kwargs: Additional parameters passed to _pipeline()

        Returns:
            Result from the final pipeline step
        """
        result = None

        for i, (name, func, kwargs) in enumerate(self._pipeline(**pipeline_kwargs)):
            try:
                result = func(**kwargs) if i == 0 else func(result, **kwargs)
                if progress:
                    self._log_step_success(name)
            except Exception as e:
                self._log_step_failure(name, e)
                raise

        return result

    def _status_prefix(self, step_name: str) -> str:
        padding = max(self.STEP_WIDTH - len(step_name), 0) + 4
        name = getattr(self, 'NAME', 'Pipeline').title()
        return f'{name} -- {step_name} {"-" * padding}>'

    def _log_step_success(self, step_name: str) -> None:
        """Print success message for a pipeline step."""
        print(f'{self._status_prefix(step_name)} {Fore.GREEN}Complete{Style.RESET_ALL}')

    def _log_step_failure(self, step_name: str, error: Exception) -> None:
        """Print failure message for a pipeline step."""
        print(f'{self._status_prefix(step_name)} {Fore.RED}Failed{Style.RESET_ALL}: {error}')
