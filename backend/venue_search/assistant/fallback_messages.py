"""Static, language-correct assistant messages used whenever narration output is unusable."""

from __future__ import annotations

from ..errors import FailureReason
from ..models import AssistPayload, Mode

FALLBACK_MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "refine": "Several good options in the area. Sort by distance or rating to refine.",
        "closed_derived": "Showing places that are closed right now, based on their listed hours.",
        "no_results": "No results found. Try expanding the search radius or removing filters.",
        "low_confidence": "Here is my best guess for your search. Refine it if this isn't what you meant.",
        "geocoding_failed": "I couldn't find that location. Try another city or area.",
        "failed": "Something went wrong with the search. Can you try again?",
        "busy": "The search is busy right now. Please try again in a moment.",
        "need_location": "To search for places near you, I need your location.",
        "need_location_q": "Can you enable location or enter a city or area?",
        "ambiguous": "I'm not sure which place you mean.",
        "ambiguous_q": "Which area should I search in?",
    },
    "he": {
        "refine": "יש כמה אפשרויות טובות באזור. אפשר למיין לפי מרחק או דירוג.",
        "closed_derived": "מוצגים מקומות שסגורים כרגע, לפי שעות הפתיחה שלהם.",
        "no_results": "לא מצאתי תוצאות. נסה להרחיב את רדיוס החיפוש או להסיר סינון.",
        "low_confidence": "אלה התוצאות הכי קרובות שמצאתי. אפשר לדייק את החיפוש אם זה לא מה שחיפשת.",
        "geocoding_failed": "לא הצלחתי למצוא את המיקום הזה. נסה עיר או אזור אחר.",
        "failed": "משהו השתבש בחיפוש. אפשר לנסות שוב?",
        "busy": "החיפוש עמוס כרגע. נסה שוב בעוד רגע.",
        "need_location": "כדי לחפש מקומות לידך אני צריך את המיקום שלך.",
        "need_location_q": "אפשר לאשר מיקום או לכתוב עיר או אזור?",
        "ambiguous": "לא בטוח לאיזה מקום התכוונת.",
        "ambiguous_q": "באיזה אזור לחפש?",
    },
    "ru": {
        "refine": "Есть хорошие варианты рядом. Отсортируйте по расстоянию или рейтингу.",
        "closed_derived": "Показаны места, которые сейчас закрыты, по их часам работы.",
        "no_results": "Результатов нет. Попробуйте увеличить радиус или убрать фильтры.",
        "low_confidence": "Вот что удалось найти по вашему запросу. Уточните его, если это не то.",
        "geocoding_failed": "Не удалось найти это место. Попробуйте другой город или район.",
        "failed": "Произошла ошибка при поиске. Попробовать ещё раз?",
        "busy": "Поиск сейчас перегружен. Попробуйте ещё раз через минуту.",
        "need_location": "Чтобы найти места рядом, мне нужно ваше местоположение.",
        "need_location_q": "Можете включить геолокацию или указать город или район?",
        "ambiguous": "Не совсем понятно, какое место вы имеете в виду.",
        "ambiguous_q": "В каком районе искать?",
    },
    "ar": {
        "refine": "هناك خيارات جيدة في المنطقة. جرّب الفرز حسب المسافة أو التقييم.",
        "closed_derived": "نعرض الأماكن المغلقة الآن حسب ساعات عملها.",
        "no_results": "لم أجد نتائج. جرّب توسيع نطاق البحث أو إزالة بعض الفلاتر.",
        "low_confidence": "هذه أفضل نتائج وجدتها لبحثك. يمكنك تحسين البحث إن لم تكن هذه ما تريد.",
        "geocoding_failed": "لم أتمكن من العثور على هذا الموقع. جرّب مدينة أو منطقة أخرى.",
        "failed": "حدث خطأ أثناء البحث. هل تريد المحاولة مرة أخرى؟",
        "busy": "البحث مزدحم حالياً. حاول مرة أخرى بعد قليل.",
        "need_location": "للبحث عن أماكن قريبة منك، أحتاج إلى موقعك.",
        "need_location_q": "هل يمكنك تفعيل الموقع أو كتابة المدينة أو المنطقة؟",
        "ambiguous": "لست متأكداً أي مكان تقصد.",
        "ambiguous_q": "في أي منطقة أبحث؟",
    },
    "fr": {
        "refine": "Plusieurs bonnes options dans le secteur. Triez par distance ou par note pour affiner.",
        "closed_derived": "Voici les lieux fermés en ce moment, d'après leurs horaires.",
        "no_results": "Aucun résultat. Essayez d'élargir le rayon ou de retirer des filtres.",
        "low_confidence": "Voici mes meilleures suggestions. Précisez la recherche si ce n'est pas ce que vous vouliez.",
        "geocoding_failed": "Je n'ai pas trouvé ce lieu. Essayez une autre ville ou un autre quartier.",
        "failed": "Un problème est survenu pendant la recherche. Réessayer ?",
        "busy": "La recherche est saturée pour le moment. Réessayez dans un instant.",
        "need_location": "Pour chercher des lieux près de vous, j'ai besoin de votre position.",
        "need_location_q": "Pouvez-vous activer la localisation ou indiquer une ville ou un quartier ?",
        "ambiguous": "Je ne suis pas sûr du lieu que vous voulez dire.",
        "ambiguous_q": "Dans quel secteur dois-je chercher ?",
    },
    "es": {
        "refine": "Hay buenas opciones cerca. Ordena por distancia o valoración para afinar.",
        "closed_derived": "Mostrando lugares cerrados ahora mismo, según su horario.",
        "no_results": "No hay resultados. Prueba ampliar el radio o quitar filtros.",
        "low_confidence": "Estos son los resultados más cercanos a tu búsqueda. Afínala si no es lo que querías.",
        "geocoding_failed": "No encontré esa ubicación. Prueba otra ciudad o zona.",
        "failed": "Algo salió mal en la búsqueda. ¿Quieres intentarlo de nuevo?",
        "busy": "La búsqueda está saturada ahora mismo. Inténtalo de nuevo en un momento.",
        "need_location": "Para buscar lugares cerca de ti, necesito tu ubicación.",
        "need_location_q": "¿Puedes activar la ubicación o escribir una ciudad o zona?",
        "ambiguous": "No estoy seguro de a qué lugar te refieres.",
        "ambiguous_q": "¿En qué zona busco?",
    },
}

RECOVERY_KEYS = {
    FailureReason.NO_RESULTS: "no_results",
    FailureReason.LOW_CONFIDENCE: "low_confidence",
    FailureReason.GEOCODING_FAILED: "geocoding_failed",
    FailureReason.PROVIDER_ERROR: "failed",
    FailureReason.TIMEOUT: "failed",
    FailureReason.QUOTA_EXCEEDED: "busy",
    FailureReason.CAPACITY_EXCEEDED: "busy",
}


def fallback_keys(
    mode: Mode, reason: FailureReason, closed_now_is_derived: bool = False
) -> tuple[str, str | None]:
    """(message key, question key) for a mode and reason."""
    if mode is Mode.CLARIFY:
        if reason is FailureReason.AMBIGUOUS_QUERY:
            return "ambiguous", "ambiguous_q"
        return "need_location", "need_location_q"
    if mode is Mode.RECOVERY:
        return RECOVERY_KEYS.get(reason, "failed"), None
    if mode is Mode.NORMAL:
        return ("closed_derived" if closed_now_is_derived else "refine"), None
    raise TypeError(f"Unknown mode: {mode!r}")


def fallback_payload(
    mode: Mode,
    reason: FailureReason,
    language: str,
    *,
    closed_now_is_derived: bool = False,
) -> AssistPayload:
    table = FALLBACK_MESSAGES.get(language)
    if table is None:
        language = "en"
        table = FALLBACK_MESSAGES["en"]
    message_key, question_key = fallback_keys(mode, reason, closed_now_is_derived)
    return AssistPayload(
        message=table[message_key],
        question=table[question_key] if question_key else None,
        mode=mode,
        language=language,
        source="fallback",
    )


__all__ = ["FALLBACK_MESSAGES", "fallback_keys", "fallback_payload"]
