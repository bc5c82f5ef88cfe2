"""
Management command to seed the RBAC catalog.

Creates the default organization, the module catalog with a permission for
every action, and the system roles of the default organization. Optionally
creates a super administrator. This command is idempotent and safe to
re-run.
"""
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from apps.rbac.models import Permission, User
from apps.rbac.provisioning import RoleProvisioner
from apps.rbac.services import AuthService, ModuleService, RoleService


class Command(BaseCommand):
    help = 'Seed organization, modules, permissions and system roles (idempotent)'

    MODULES = [
        {'name': 'Authentication', 'slug': 'auth', 'route_path': '/login', 'display_order': 1},
        {'name': 'Users', 'slug': 'users', 'route_path': '/users', 'display_order': 2},
        {'name': 'Dashboard', 'slug': 'dashboard', 'route_path': '/dashboard', 'display_order': 3},
        {'name': 'Organizations', 'slug': 'organizations', 'route_path': '/organizaciones', 'display_order': 4},
        {'name': 'Forest Patrimony', 'slug': 'forest-patrimony', 'route_path': '/patrimonio-forestal',
         'display_order': 5},
        {'name': 'Forest Biological Asset', 'slug': 'forest-biological-asset', 'route_path': '/activo-biologico',
         'display_order': 6},
        {'name': 'Forest Configuration', 'slug': 'forest-config', 'route_path': '/configuracion-forestal',
         'display_order': 7},
        {'name': 'General Configuration', 'slug': 'general-config', 'route_path': '/configuracion-general',
         'display_order': 8},
        {'name': 'Profile', 'slug': 'profile', 'route_path': '/profile', 'display_order': 9},
        {'name': 'Analytics', 'slug': 'analytics', 'route_path': '/analytics', 'display_order': 10},
        {'name': 'Settings', 'slug': 'settings', 'route_path': '/settings', 'display_order': 11},
        {'name': 'Audit', 'slug': 'audit', 'route_path': '/audit', 'display_order': 12},
    ]

    SYSTEM_ROLES = ['SUPER_ADMIN', 'ADMIN', 'MANAGER', 'USER']

    def add_arguments(self, parser):
        parser.add_argument(
            '--admin-email',
            type=str,
            help='Create or refresh a SUPER_ADMIN user with this email',
        )
        parser.add_argument(
            '--admin-password',
            type=str,
            help='Password for the SUPER_ADMIN user (requires --admin-email)',
        )

    def handle(self, *args, **options):
        admin_email = options.get('admin_email')
        admin_password = options.get('admin_password')
        if admin_password and not admin_email:
            raise CommandError('--admin-email is required when using --admin-password')
        if admin_email and not admin_password:
            raise CommandError('--admin-password is required when using --admin-email')

        with transaction.atomic():
            organization = AuthService.default_organization()
            self.stdout.write(f'Organization: {organization.name} ({organization.slug})')

            for module_data in self.MODULES:
                module = ModuleService.upsert_module(**module_data)
                self.stdout.write(self.style.SUCCESS(f'✓ Module: {module.slug}'))

            provisioner = RoleProvisioner()
            for role_slug in self.SYSTEM_ROLES:
                role = provisioner.ensure_role_with_permissions(role_slug, organization.id)
                self.stdout.write(
                    self.style.SUCCESS(f'✓ Role: {role.slug} ({role.role_permissions.count()} permissions)')
                )

            if admin_email:
                self._seed_super_admin(admin_email, admin_password, organization)

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {len(self.MODULES)} modules, '
                f'{Permission.objects.count()} permissions, {len(self.SYSTEM_ROLES)} system roles'
            )
        )

    def _seed_super_admin(self, email, password, organization):
        user = User.objects.by_email(email)
        if user is None:
            user = User.objects.create_user(
                email,
                password,
                first_name='System',
                last_name='Admin',
                status=User.STATUS_ACTIVE,
                organization=organization,
            )
            self.stdout.write(self.style.SUCCESS(f'✓ Created user: {user.email}'))
        else:
            user.set_password(password)
            user.status = User.STATUS_ACTIVE
            user.failed_login_attempts = 0
            user.locked_until = None
            user.save()
            self.stdout.write(self.style.WARNING(f'↻ Updated user: {user.email}'))

        RoleService.reassign_user_role(user.id, 'SUPER_ADMIN', organization_id=organization.id)
        self.stdout.write(self.style.SUCCESS(f'✓ {user.email} is SUPER_ADMIN of {organization.name}'))
