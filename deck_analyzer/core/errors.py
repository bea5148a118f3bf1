from __future__ import annotations


class DeckAnalyzerError(Exception):
    """Базовое исключение сервиса."""


# --- структурные ошибки контейнера -----------------------------------------
class ContainerError(DeckAnalyzerError):
    """Архив повреждён или не является OOXML-пакетом."""


class EntryNotFoundError(ContainerError, KeyError):
    """В контейнере нет запрошенной части."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Entry not found in container: {path}")

    def __str__(self) -> str:  # KeyError иначе оборачивает сообщение в кавычки
        return self.args[0]


# --- внешние сервисы --------------------------------------------------------
class RenderingError(DeckAnalyzerError):
    """Сервис рендеринга (LibreOffice) недоступен или не вернул PDF."""


class UnderstandingError(DeckAnalyzerError):
    """Сервис анализа (Gemini) вернул ошибку или не ответил вовремя."""


class ReplyParseError(DeckAnalyzerError):
    """Ответ сервиса анализа не разбирается в ожидаемую структуру."""


# --- жизненный цикл задач ---------------------------------------------------
class JobNotFoundError(DeckAnalyzerError, LookupError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found.")


class InvalidTransitionError(DeckAnalyzerError):
    """Запрошенный переход состояния задачи запрещён."""

    def __init__(self, job_id: str, current: str, target: str):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Job {job_id}: transition {current} -> {target} is not allowed.")
