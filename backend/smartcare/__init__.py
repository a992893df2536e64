"""SmartCare telehealth video room backend."""
