"""Admissions pipeline service: program applications, interviews, messaging and onboarding."""
