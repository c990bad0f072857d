"""Power state steps for vApps and VMs."""

from vcloud_cpi.errors import VCloudError
from vcloud_cpi.steps.base import Step


class PowerOn(Step):
    """Power on a vApp/VM; rollback powers it back off."""

    STATE_KEY = "powered_on"

    def perform(self, vapp):
        vapp = self.client.reload(vapp)
        if vapp.is_powered_on:
            self.client.logger.debug(f"{vapp.name} is already powered on")
            return vapp

        link = vapp.power_on_link
        if link is None:
            raise VCloudError(f"{vapp.name} cannot be powered on in its current state")

        task = self.client.invoke("POST", link)
        self.client.wait_task(task)
        self.state[self.state_key] = vapp
        return vapp

    def rollback(self):
        vapp = self.state.get(self.state_key)
        if not vapp:
            return

        vapp = self.client.reload(vapp)
        link = vapp.power_off_link
        if link is not None:
            task = self.client.invoke("POST", link)
            self.client.wait_task(task)
        self.state.pop(self.state_key, None)


class PowerOff(Step):
    """Power off a vApp/VM; rollback powers it back on."""

    STATE_KEY = "powered_off"

    def perform(self, vapp):
        vapp = self.client.reload(vapp)
        if not vapp.is_powered_on:
            self.client.logger.debug(f"{vapp.name} is already powered off")
            return vapp

        task = self.client.invoke("POST", vapp.power_off_link)
        self.client.wait_task(task)
        self.state[self.state_key] = vapp
        return vapp

    def rollback(self):
        vapp = self.state.get(self.state_key)
        if not vapp:
            return

        vapp = self.client.reload(vapp)
        link = vapp.power_on_link
        if link is not None:
            task = self.client.invoke("POST", link)
            self.client.wait_task(task)
        self.state.pop(self.state_key, None)


class Reboot(Step):
    """Reboot a powered-on vApp/VM. Cannot be undone."""

    def perform(self, vapp):
        vapp = self.client.reload(vapp)
        link = vapp.reboot_link
        if link is None:
            raise VCloudError(f"{vapp.name} cannot be rebooted in its current state")

        task = self.client.invoke("POST", link)
        self.client.wait_task(task)
        return vapp
