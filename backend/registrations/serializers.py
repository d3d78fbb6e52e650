import re

from rest_framework import serializers

from . import referrals
from .drafts import DRAFT_FIELDS
from .ledger import UNKNOWN_REFERRER
from .models import AttendanceStatus, StudentRecord

FORM_FIELDS = [
    'full_name', 'parent_name', 'mobile', 'whatsapp', 'email', 'school_name',
    'class_std', 'field_of_interest', 'location', 'notes', 'referral_code',
]


def clean_phone(value: str) -> str:
    """Digits with an optional leading '+', at most 16 characters (E.164 plus the sign)."""
    value = value or ''
    has_plus = value.strip().startswith('+')
    digits = re.sub(r'\D', '', value)
    cleaned = f"+{digits}" if has_plus else digits
    return cleaned[:16]


class StudentRecordSerializer(serializers.ModelSerializer):
    referred_by_name = serializers.SerializerMethodField()

    class Meta:
        model = StudentRecord
        fields = FORM_FIELDS + [
            'seat_number', 'own_referral_code', 'attendance', 'created_at', 'referred_by_name',
        ]
        read_only_fields = fields

    def get_referred_by_name(self, obj):
        if not obj.referral_code:
            return ''
        referrers = self.context.get('referrers')
        if referrers is None:
            return None
        return referrers.get(obj.referral_code, UNKNOWN_REFERRER)


class RegistrationSubmissionSerializer(serializers.ModelSerializer):
    """Validates the public registration form."""

    class Meta:
        model = StudentRecord
        fields = FORM_FIELDS
        extra_kwargs = {
            'class_std': {'read_only': True},
        }

    def validate_mobile(self, value):
        cleaned = clean_phone(value)
        if len(cleaned.lstrip('+')) < 10:
            raise serializers.ValidationError('Enter a valid mobile number.')
        return cleaned

    def validate_whatsapp(self, value):
        cleaned = clean_phone(value)
        if cleaned and len(cleaned.lstrip('+')) < 10:
            raise serializers.ValidationError('Enter a valid WhatsApp number.')
        return cleaned

    def validate_full_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('This field may not be blank.')
        return value

    def validate_referral_code(self, value):
        code = referrals.normalize_code(value)
        if referrals.validate(code) == referrals.ReferralStatus.INVALID:
            raise serializers.ValidationError('Please enter a valid Referral Code or leave it blank.')
        return code


class DraftSerializer(serializers.Serializer):
    """Partial form; every field optional and unchecked."""

    def get_fields(self):
        return {
            name: serializers.CharField(required=False, allow_blank=True, trim_whitespace=False)
            for name in DRAFT_FIELDS
        }


class AttendanceUpdateSerializer(serializers.Serializer):
    attendance = serializers.ChoiceField(choices=AttendanceStatus.choices)


class SnapshotRecordSerializer(serializers.ModelSerializer):
    """A full record as stored, used to restore the ledger in one go."""

    class Meta:
        model = StudentRecord
        fields = FORM_FIELDS + ['seat_number', 'own_referral_code', 'attendance', 'created_at']
        extra_kwargs = {
            # the whole ledger is replaced, so existing seats are not conflicts
            'seat_number': {'validators': []},
            'created_at': {'required': False},
        }
