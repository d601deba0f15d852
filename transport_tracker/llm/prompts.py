"""Prompts for Gemini - transport insight generation."""

SYSTEM_PROMPT = """You are an expert data analyst for a raw-material \
transport system moving soybeans and yellow maize by truck from the port \
to unloading sites against release quotas. You reply with exactly one \
short, encouraging and professional sentence of advice, with no markdown \
and no preamble."""

INSIGHT_PROMPT = """Analyse the following transport data and give one \
smart, very short piece of advice (a single line):
- Current number of trips: {trip_count}
- Total number of releases: {release_count}
- Trip details (first 10): {trip_details}

Reply language: {language}."""

FALLBACK_INSIGHT = {
    "ar": "جاهز لتحليل بياناتك القادمة!",
    "en": "Ready to analyze your next data!",
}

EMPTY_INSIGHT = {
    "ar": "البيانات مستقرة حالياً.",
    "en": "Data is stable.",
}
