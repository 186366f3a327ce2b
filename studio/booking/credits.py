"""
Make-up credit ledger.

A notified absence banks one credit; redeeming it as a one-time booking
spends one. The balance lives on Student.makeup_credits and never goes below
zero.
"""
from studio.errors import NoCreditsAvailable
from studio.scheduling.state import Student


class MakeupLedger:
    """Stateless: works on whatever Student it is handed."""

    @staticmethod
    def after_earn(student: Student) -> int:
        return student.makeup_credits + 1

    @staticmethod
    def after_spend(student: Student) -> int:
        if student.makeup_credits <= 0:
            raise NoCreditsAvailable(student.id)
        return student.makeup_credits - 1

    @staticmethod
    def apply(student: Student, new_balance: int) -> None:
        student.makeup_credits = max(0, new_balance)

    def earn(self, student: Student) -> int:
        self.apply(student, self.after_earn(student))
        return student.makeup_credits

    def spend(self, student: Student) -> int:
        self.apply(student, self.after_spend(student))
        return student.makeup_credits
