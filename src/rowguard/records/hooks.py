from typing import Any, Callable

# (statement, model class) -> statement
StatementRewriter = Callable[[Any, type], Any]
Observer = Callable[[], None]


class MutationHooks:
    """
    Interception points of a record handle's delete/update pipeline.

    - rewriters run, in registration order, over both the DELETE and the UPDATE
      statement before it executes;
    - after-delete / after-update observers run, in registration order, only
      once the mutation succeeded (row-count check passed).
    """

    def __init__(self) -> None:
        self.rewriters: list[StatementRewriter] = []
        self.after_delete: list[Observer] = []
        self.after_update: list[Observer] = []

    def add_rewriter(self, rewriter: StatementRewriter) -> None:
        self.rewriters.append(rewriter)

    def on_after_delete(self, observer: Observer) -> None:
        self.after_delete.append(observer)

    def on_after_update(self, observer: Observer) -> None:
        self.after_update.append(observer)

    def rewrite(self, statement: Any, model: type) -> Any:
        for rewriter in self.rewriters:
            statement = rewriter(statement, model)
        return statement

    def fire_after_delete(self) -> None:
        for observer in self.after_delete:
            observer()

    def fire_after_update(self) -> None:
        for observer in self.after_update:
            observer()
