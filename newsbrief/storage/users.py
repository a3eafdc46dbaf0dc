from newsbrief.storage.schema import User


def normalize_email(email) -> str:
    return str(email or "").strip().lower()


class UserRepository:
    def __init__(self, store):
        self.store = store

    @property
    def all(self) -> list[User]:
        return self.store.state.users

    def get(self, user_id: str) -> User | None:
        return next((u for u in self.all if u.id == user_id), None)

    def find_by_email(self, email: str) -> User | None:
        normalized = normalize_email(email)
        return next((u for u in self.all if u.email == normalized), None)

    def add(self, user: User) -> User:
        self.all.append(user)
        self.save()
        return user

    def remove(self, user_id: str) -> User | None:
        user = self.get(user_id)
        if user is not None:
            self.all.remove(user)
        return user

    def save(self):
        self.store.save(users=True, briefings=False, usage=False, activity=False)
