"""
E-Learning Package - DSP (Digital Solutions Platform)

Dieses Paket enthält die kostenpflichtige Kurseinschreibung: Kurse mit
begrenzten Plätzen, Einschreibungen und die Zahlungsbestätigung über Stripe
(PaymentIntents) und SSLCommerz (Redirect).

Features:
- Einschreibung mit Platzreservierung und Stornierung
- Zahlungsinitiierung und idempotente Bestätigung über alle Kanäle
- Teil- und Vollerstattungen durch Administratoren
- Abgleich hängender Zahlungen per Management Command

Struktur:
- courses/: Kurse und Platzverwaltung
- enrollments/: Einschreibungen und Lernfortschritt
- payments/: Zahlungen, Bestätigungsereignisse, Erstattungen
- management/: Django Management Commands

Author: DSP Development Team
Created: 10.07.2025
Version: 1.0.0
"""
