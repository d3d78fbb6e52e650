import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='SeatCounter',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('year', models.CharField(max_length=10, unique=True)),
                ('value', models.PositiveIntegerField()),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name='StudentRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('full_name', models.CharField(max_length=150)),
                ('parent_name', models.CharField(max_length=150)),
                ('mobile', models.CharField(max_length=20)),
                ('whatsapp', models.CharField(blank=True, default='', max_length=20)),
                ('email', models.EmailField(max_length=254)),
                ('school_name', models.CharField(max_length=200)),
                ('class_std', models.CharField(default='10th', max_length=10)),
                ('field_of_interest', models.CharField(choices=[('Engineering', 'Engineering'), ('Pharmacy', 'Pharmacy'), ('B.Sc Agri', 'B.Sc Agri'), ('Doctor', 'Doctor')], max_length=20)),
                ('location', models.CharField(choices=[('Satpur', 'Satpur Branch (Main)'), ('Meri', 'Meri Branch')], max_length=20)),
                ('notes', models.TextField(blank=True, default='')),
                ('referral_code', models.CharField(blank=True, default='', max_length=20)),
                ('seat_number', models.CharField(max_length=30, unique=True)),
                ('own_referral_code', models.CharField(db_index=True, max_length=20)),
                ('attendance', models.CharField(choices=[('Pending', 'Pending'), ('Present', 'Present'), ('Absent', 'Absent'), ('Late', 'Late')], default='Pending', max_length=10)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'ordering': ['id'],
            },
        ),
    ]
