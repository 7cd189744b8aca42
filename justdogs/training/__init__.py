"""Domain logic: records, booking/session lifecycle, calendar and messaging."""
