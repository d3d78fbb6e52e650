from django.urls import path

from .views import (
    export_csv,
    export_xlsx,
    generate_seat,
    registration_detail,
    registration_draft,
    registration_stats,
    registrations,
    registrations_snapshot,
    update_attendance,
    validate_referral,
    whatsapp_confirmation,
)

urlpatterns = [
    # fixed paths first so they aren't mistaken for a seat number
    path('registrations/', registrations),
    path('registrations/stats/', registration_stats),
    path('registrations/export/', export_csv),
    path('registrations/export/xlsx/', export_xlsx),
    path('registrations/snapshot/', registrations_snapshot),
    path('registrations/<str:seat_number>/', registration_detail),
    path('registrations/<str:seat_number>/attendance/', update_attendance),
    path('registrations/<str:seat_number>/whatsapp/', whatsapp_confirmation),
    path('seats/next/', generate_seat),
    path('referrals/validate/', validate_referral),
    path('draft/', registration_draft),
]
