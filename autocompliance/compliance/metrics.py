from prometheus_client import Counter


reminders_created_total = Counter(
    "compliance_reminders_created_total",
    "Total compliance reminders created via API",
)

reminders_cancelled_total = Counter(
    "compliance_reminders_cancelled_total",
    "Total compliance reminders cancelled",
)

dispatcher_scans_total = Counter(
    "compliance_dispatcher_scans_total",
    "Total dispatcher scan cycles",
)

reminders_sent_total = Counter(
    "compliance_reminders_sent_total",
    "Total reminders delivered on at least one channel",
)

reminders_failed_total = Counter(
    "compliance_reminders_failed_total",
    "Total reminders whose delivery failed on every channel",
)

reminders_escalated_total = Counter(
    "compliance_reminders_escalated_total",
    "Total reminders escalated",
)

reminders_skipped_total = Counter(
    "compliance_reminders_skipped_total",
    "Total reminders skipped because of a conflicting update or illegal transition",
)

checklists_rolled_forward_total = Counter(
    "compliance_checklists_rolled_forward_total",
    "Total checklists whose next due date was advanced",
)
