from django.db import models
from django.utils import timezone


class FieldOfInterest(models.TextChoices):
    ENGINEERING = 'Engineering', 'Engineering'
    PHARMACY = 'Pharmacy', 'Pharmacy'
    BSC_AGRI = 'B.Sc Agri', 'B.Sc Agri'
    DOCTOR = 'Doctor', 'Doctor'


class Location(models.TextChoices):
    SATPUR = 'Satpur', 'Satpur Branch (Main)'
    MERI = 'Meri', 'Meri Branch'


class AttendanceStatus(models.TextChoices):
    PENDING = 'Pending', 'Pending'
    PRESENT = 'Present', 'Present'
    ABSENT = 'Absent', 'Absent'
    LATE = 'Late', 'Late'


class StudentRecord(models.Model):
    """One row per successful registration.

    Seat number and own referral code are assigned by the system at submission
    and never change afterwards; attendance is the only field the admin edits.
    """
    full_name = models.CharField(max_length=150)
    parent_name = models.CharField(max_length=150)
    mobile = models.CharField(max_length=20)
    whatsapp = models.CharField(max_length=20, blank=True, default='')
    email = models.EmailField()
    school_name = models.CharField(max_length=200)
    class_std = models.CharField(max_length=10, default='10th')
    field_of_interest = models.CharField(max_length=20, choices=FieldOfInterest.choices)
    location = models.CharField(max_length=20, choices=Location.choices)
    notes = models.TextField(blank=True, default='')
    referral_code = models.CharField(max_length=20, blank=True, default='')
    seat_number = models.CharField(max_length=30, unique=True)
    # collisions are tolerated, so this is indexed but not unique
    own_referral_code = models.CharField(max_length=20, db_index=True)
    attendance = models.CharField(
        max_length=10, choices=AttendanceStatus.choices, default=AttendanceStatus.PENDING
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return f"{self.full_name} ({self.seat_number})"


class SeatCounter(models.Model):
    """Last seat sequence issued for an exam year."""
    year = models.CharField(max_length=10, unique=True)
    value = models.PositiveIntegerField()
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.year}: {self.value}"
